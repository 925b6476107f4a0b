"""
Associations between models.

A :py:class:`BelongsTo` declared on a model links each of its entries to one
entry of another model, through a foreign key attribute on the owner:

.. code-block:: python

    class User(Model):
        uid = CharField(primary_key=True)
        gidNumber = IntegerField()
        primary_group = BelongsTo("Group", foreign_key="gidNumber",
                                  primary_key="gidNumber")

    user.primary_group            # Group instance, loaded on first access
    user.primary_group = group    # sets user.gidNumber = group.gidNumber
    user.association("primary_group").reload()

The target is looked up lazily and cached on the owner instance until
:py:meth:`BelongsToProxy.reset`, :py:meth:`BelongsToProxy.reload`, a new
assignment, or :py:meth:`ldapmapper.models.Model.reload`.
"""

import weakref
from typing import TYPE_CHECKING, Any, cast

from .exceptions import EntryNotFound

if TYPE_CHECKING:
    from .fields import Field
    from .models import Model
    from .options import Options


class BelongsTo:
    """
    Declare that entries of the owning model belong to an entry of
    ``model``.

    Args:
        model: the target model class, or its class name
        foreign_key: the field (or LDAP attribute) on the owning model that
            holds the reference

    Keyword Args:
        primary_key: what ``foreign_key`` refers to on the target: ``"dn"``
            for the target's DN, or the name of one of its fields or
            attributes

    """

    def __init__(
        self, model: "type[Model] | str", foreign_key: str, primary_key: str = "dn"
    ) -> None:
        self._model = model
        self.foreign_key = foreign_key
        self.primary_key = primary_key
        self.name: str | None = None
        self.owner_model: type[Model] | None = None

    def __repr__(self) -> str:
        return f"<BelongsTo: {self.name} -> {self._model}>"

    def contribute_to_class(self, cls, name: str) -> None:
        self.name = name
        self.owner_model = cls
        cls._meta.add_association(self)
        setattr(cls, name, self)

    @property
    def model(self) -> "type[Model]":
        """
        The target model class, resolving a class name on first use.
        """
        if isinstance(self._model, str):
            from .models import get_model  # noqa: PLC0415

            self._model = get_model(self._model)
        return self._model

    def foreign_key_field(self) -> "Field":
        options = cast("Options", cast("Any", self.owner_model)._meta)
        if self.foreign_key in options.fields_map:
            return options.fields_map[self.foreign_key]
        field = options.field_for_attribute(self.foreign_key)
        if field is None:
            msg = (
                f"{options.object_name}.{self.name}: no field for foreign key "
                f"'{self.foreign_key}'"
            )
            raise AttributeError(msg)
        return field

    def proxy(self, instance: "Model") -> "BelongsToProxy":
        proxies = instance.__dict__.setdefault("_association_proxies", {})
        if self.name not in proxies:
            proxies[self.name] = BelongsToProxy(self, instance)
        return proxies[self.name]

    def __get__(self, instance: "Model | None", owner: type | None = None) -> Any:
        if instance is None:
            return self
        return self.proxy(instance).target

    def __set__(self, instance: "Model", value: "Model | None") -> None:
        self.proxy(instance).replace(value)


class BelongsToProxy:
    """
    The per-instance side of a :py:class:`BelongsTo`: it holds the cached
    target, and only a weak reference back to the owning instance.

    Args:
        association: the association this proxy serves
        owner: the owning model instance

    """

    def __init__(self, association: BelongsTo, owner: "Model") -> None:
        self.association = association
        self._owner = weakref.ref(owner)
        self._target: Model | None = None
        self.loaded = False
        #: ``True`` once :py:meth:`replace` has copied a new reference into the
        #: owner's foreign key
        self.updated = False

    def __repr__(self) -> str:
        return (
            f"<BelongsToProxy: {self.association.name} loaded={self.loaded} "
            f"target={self._target!r}>"
        )

    @property
    def owner(self) -> "Model":
        owner = self._owner()
        if owner is None:
            msg = f"The owner of association '{self.association.name}' is gone"
            raise ReferenceError(msg)
        return owner

    @property
    def foreign_key(self) -> Any:
        """
        The owner's current foreign key value; the first value, if the
        attribute is multi-valued.
        """
        field = self.association.foreign_key_field()
        value = getattr(self.owner, cast("str", field.name), None)
        if isinstance(value, list):
            value = value[0] if value else None
        if value in (None, ""):
            return None
        return value

    def _target_key(self, target: "Model") -> Any:
        primary_key = self.association.primary_key
        if primary_key == "dn":
            return target.dn
        options = cast("Options", target._meta)
        field = options.fields_map.get(primary_key) or options.field_for_attribute(
            primary_key
        )
        if field is None:
            msg = f"{options.object_name} has no field for '{primary_key}'"
            raise AttributeError(msg)
        return getattr(target, cast("str", field.name))

    def replace(self, target: "Model | None") -> None:
        """
        Point the association at ``target``, or clear it with ``None``.

        The target is cached right away.  Only a target that already exists
        in LDAP has its key copied into the owner's foreign key; a new one
        has no stable key yet.
        """
        field = self.association.foreign_key_field()
        if target is None:
            self._target = None
            setattr(self.owner, cast("str", field.name), field.get_default())
        else:
            self._target = target
            if not target.is_new:
                setattr(self.owner, cast("str", field.name), self._target_key(target))
                self.updated = True
        self.loaded = True

    def find_target(self) -> "Model":
        """
        Look the target up in LDAP.

        Raises:
            EntryNotFound: the owner has no foreign key value, or nothing
                matches it.

        """
        value = self.foreign_key
        model = self.association.model
        if value is None:
            msg = (
                f"{self.association.name}: {self.association.foreign_key} "
                "is not set"
            )
            raise EntryNotFound(msg, operation="find_target")
        manager = cast("Any", model.objects)
        if self.association.primary_key == "dn":
            return manager.get_by_dn(str(value))
        options = cast("Options", model._meta)
        field = options.fields_map.get(self.association.primary_key)
        attribute = field.ldap_attribute if field else self.association.primary_key
        target = manager.first([[attribute, str(value)]])
        if target is None:
            msg = (
                f"No {model.__name__} with {attribute}={value} for "
                f"{self.association.name}"
            )
            raise EntryNotFound(msg, operation="find_target", result_code=32)
        return target

    @property
    def target(self) -> "Model | None":
        """
        The associated instance, loaded on first access; ``None`` if the
        owner's foreign key is empty.
        """
        if not self.loaded:
            if self.foreign_key is None:
                return None
            self._target = self.find_target()
            self.loaded = True
        return self._target

    def reset(self) -> None:
        """
        Forget the cached target; the next access loads it again.
        """
        self._target = None
        self.loaded = False
        self.updated = False

    def reload(self) -> "Model | None":
        self.reset()
        return self.target
