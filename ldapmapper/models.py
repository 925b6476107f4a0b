"""
Models: Python classes backed by LDAP entries.

A :py:class:`Model` subclass declares fields (one per LDAP attribute), a
``Meta`` class naming the object classes its entries carry and where they
live, and optionally :py:class:`~ldapmapper.associations.BelongsTo`
associations.  Each instance is one entry.  :py:mod:`ldapmapper.objectclasses`
manages its object classes, and :py:meth:`Model.save` runs the
validate-then-write pipeline that adds or modifies it on the server.

.. code-block:: python

    class User(Model):
        uid = CharField(primary_key=True)
        cn = CharField()
        sn = CharField()

        class Meta:
            basedn = "ou=users,dc=example,dc=com"
            objectclass = "inetOrgPerson"
"""

import inspect
from typing import Any, cast

from django.core.exceptions import FieldDoesNotExist, ValidationError
from django.db.models.signals import class_prepared, post_init, pre_init

from .associations import BelongsTo, BelongsToProxy
from .exceptions import EntryInvalid, EntryNotFound, LdapMapperError
from .fields import Field
from .managers import LdapManager
from .objectclasses import ObjectClassMixin
from .options import Options
from .schema import strip_options
from .typing import LDAPData
from .validation import validate_required_values

#: Every concrete model class, by class name, so associations can name their
#: target before it is defined
_model_registry: dict[str, type["Model"]] = {}


def get_model(name: str) -> type["Model"]:
    """
    Return the model class called ``name``.

    Raises:
        LookupError: no model by that name has been declared.

    """
    try:
        return _model_registry[name]
    except KeyError as e:
        msg = f"No ldapmapper model named '{name}'"
        raise LookupError(msg) from e


class LdapModelBase(type):
    """
    Metaclass for models.

    Builds ``_meta`` from the ``Meta`` class, hands every declared field and
    association to it via ``contribute_to_class``, gives the model its own
    ``DoesNotExist`` and ``MultipleObjectsReturned`` exceptions, and finally
    attaches the ``objects`` manager.
    """

    def __new__(cls, name, bases, attrs, **kwargs):
        if not any(isinstance(base, LdapModelBase) for base in bases):
            # Model itself
            return super().__new__(cls, name, bases, attrs)

        module = attrs.pop("__module__")
        meta = attrs.pop("Meta", None)
        class_attrs = {"__module__": module}
        if "__classcell__" in attrs:
            class_attrs["__classcell__"] = attrs.pop("__classcell__")
        model = super().__new__(cls, name, bases, class_attrs, **kwargs)

        model.add_to_class("_meta", Options(meta or getattr(model, "Meta", None)))
        for exception_name in ("DoesNotExist", "MultipleObjectsReturned"):
            parent = getattr(Model, exception_name)
            model.add_to_class(
                exception_name, type(exception_name, (parent,), {"__module__": module})
            )
        for attr_name, value in attrs.items():
            model.add_to_class(attr_name, value)

        model._meta.concrete_model = model  # type: ignore[attr-defined]
        model._prepare()
        _model_registry[name] = model
        return model

    def add_to_class(cls, name: str, value: Any) -> None:
        # Fields, associations, managers and Options know how to install
        # themselves
        if not inspect.isclass(value) and hasattr(value, "contribute_to_class"):
            value.contribute_to_class(cls, name)
        else:
            setattr(cls, name, value)

    def _prepare(cls) -> None:
        opts = cast("Options", cls._meta)  # type: ignore[attr-defined]
        opts._prepare(cls)
        if "objects" in opts.fields_map:
            msg = (
                f"{cls.__name__} has a field named 'objects', which would hide "
                "its manager"
            )
            raise ValueError(msg)
        cls.add_to_class("objects", opts.manager_class())
        class_prepared.send(sender=cls)


class Model(ObjectClassMixin, metaclass=LdapModelBase):
    """
    Base class for models.

    An instance is either *new* (it only exists in memory, and
    :py:meth:`save` will add it) or *loaded* (it came from the server, and
    :py:meth:`save` will send only what changed since it was loaded).

    Keyword Args:
        **kwargs: field values and associations, by name; unset fields get
            their defaults.  A new instance with no ``objectclass`` gets the
            classes its model requires.

    Raises:
        TypeError: a keyword names neither a field nor an association.

    """

    class DoesNotExist(EntryNotFound):
        """No entry matched."""

    class MultipleObjectsReturned(LdapMapperError):
        """More than one entry matched where we expected exactly one."""

    _meta: Options | None = None
    objects: LdapManager | None = None

    def __init__(self, **kwargs) -> None:
        opts = cast("Options", self._meta)
        self._dn: str | None = kwargs.pop("_dn", None)
        self._new = True
        self._original: dict[str, list[bytes]] | None = None
        self._association_proxies: dict[str, BelongsToProxy] = {}
        pre_init.send(sender=type(self), args=(), kwargs=kwargs)

        for field in opts.fields:
            name = cast("str", field.name)
            setattr(self, name, kwargs.pop(name) if name in kwargs else field.get_default())
        if not self.objectclass:
            self.objectclass = list(opts.required_classes)

        targets = {
            association: kwargs.pop(cast("str", association.name))
            for association in opts.associations
            if association.name in kwargs
        }
        if kwargs:
            msg = (
                f"{type(self).__name__}() got unexpected keyword argument(s): "
                f"{', '.join(kwargs)}"
            )
            raise TypeError(msg)
        for association, target in targets.items():
            association.proxy(self).replace(target)
        super().__init__()
        post_init.send(sender=type(self), instance=self)

    # ------------------------
    # Conversion from and to LDAP
    # ------------------------

    @classmethod
    def from_db(
        cls,
        attributes: list[str],
        objects: LDAPData | list[LDAPData],
        many: bool = False,
    ) -> "Model | list[Model]":
        """
        Build loaded instances from the ``(dn, attributes)`` pairs a search
        returned.

        Args:
            attributes: the LDAP attributes we asked the server for
            objects: one ``(dn, attributes)`` pair, or a list of them

        Keyword Args:
            many: return a list; otherwise exactly one pair is expected and
                one instance comes back

        Raises:
            FieldDoesNotExist: one of ``attributes`` maps to no field
            RuntimeError: ``many`` is ``False`` but we got several entries

        """
        opts = cast("Options", cls._meta)
        rows = objects if isinstance(objects, list) else [objects]
        if not many and len(rows) > 1:
            msg = f"{opts.object_name}.from_db() got {len(rows)} entries with many=False"
            raise RuntimeError(msg)
        fields: list[Field] = []
        for attribute in attributes:
            field = opts.field_for_attribute(attribute)
            if field is None:
                msg = f"{opts.object_name} has no field for LDAP attribute '{attribute}'"
                raise FieldDoesNotExist(msg)
            fields.append(field)
        instances = []
        for dn, data in rows:
            if not isinstance(data, dict):
                continue
            # Attribute names are case-insensitive in LDAP, and may come back
            # with options such as ";binary" attached
            received = {strip_options(k).lower(): v for k, v in data.items()}
            values = {
                cast("str", field.name): field.from_db_value(
                    received[field.ldap_attribute.lower()]
                )
                for field in fields
                if field.ldap_attribute.lower() in received
            }
            instances.append(cls._create_from_db(dn, values))
        return instances if many else instances[0]

    @classmethod
    def _create_from_db(cls, dn: str, values: dict[str, Any]) -> "Model":
        instance = cls.__new__(cls)
        instance._dn = dn
        instance._new = False
        instance._association_proxies = {}
        for field in cast("Options", cls._meta).fields:
            name = cast("str", field.name)
            setattr(instance, name, values[name] if name in values else field.get_default())
        instance._original = instance.to_db()[1]
        post_init.send(sender=cls, instance=instance)
        return instance

    def to_db(self) -> LDAPData:
        """
        Return the instance as ``(dn, {attribute: [bytes, ...]})``, the shape
        python-ldap's search methods return.

        Attributes without a value are included as ``[]`` so that
        :py:class:`ldapmapper.managers.Modlist` can tell which ones need
        deleting.
        """
        data: dict[str, list[bytes]] = {}
        for field in cast("Options", self._meta).fields:
            data.update(field.to_db_value(field.value_from_object(self)))
        return (cast("str", self.dn), data)

    # ------------------------
    # Identity
    # ------------------------

    def __repr__(self) -> str:
        return f"<{type(self).__name__}: {self.dn}>"

    def __str__(self) -> str:
        return str(self.dn)

    def __eq__(self, other: object) -> bool:
        """
        Instances of the same model are equal when their primary keys are.
        """
        if not isinstance(other, Model):
            return False
        if cast("Options", self._meta).concrete_model is not cast(
            "Options", other._meta
        ).concrete_model:
            return False
        if self.pk is None:
            return self is other
        return self.pk == other.pk

    def __hash__(self) -> int:
        return hash(self.dn)

    @property
    def pk(self) -> Any:
        return getattr(self, cast("str", cast("Field", cast("Options", self._meta).pk).name))

    @pk.setter
    def pk(self, value: Any) -> None:
        setattr(self, cast("str", cast("Field", cast("Options", self._meta).pk).name), value)

    @property
    def _manager(self) -> LdapManager:
        return cast("LdapManager", cast("Options", self._meta).base_manager)

    @property
    def dn(self) -> str | None:
        """
        The entry's DN, or ``None`` while the primary key has no value.
        """
        if self._dn:
            return self._dn
        return self._manager.dn(self)

    # ------------------------
    # State
    # ------------------------

    @property
    def is_new(self) -> bool:
        """
        ``True`` until the instance has been saved to, or loaded from, LDAP.
        """
        return self._new

    def changed_attributes(self) -> list[str]:
        """
        Return the LDAP attributes whose values differ from what we loaded.
        Everything with a value counts as changed on a new instance.
        """
        _, data = self.to_db()
        if self._original is None:
            return [attribute for attribute, values in data.items() if values]
        before = {k.lower(): v for k, v in self._original.items()}
        return [
            attribute
            for attribute, values in data.items()
            if before.get(attribute.lower(), []) != values
        ]

    @property
    def is_dirty(self) -> bool:
        return self._new or bool(self.changed_attributes())

    def association(self, name: str) -> BelongsToProxy:
        """
        Return the proxy for the association ``name``, for
        :py:meth:`~ldapmapper.associations.BelongsToProxy.reload` and friends.
        """
        association = cast("Options", self._meta).get_association(name)
        return cast("BelongsTo", association).proxy(self)

    # ------------------------
    # Persistence
    # ------------------------

    def save(self, validate: bool = True, controls: list[Any] | None = None) -> None:
        """
        Write the instance to LDAP: new instances are added, loaded ones
        have their changes written, and nothing is sent if nothing changed.

        Keyword Args:
            validate: run :py:meth:`full_clean` first
            controls: server controls to send with the write

        Raises:
            EntryInvalid: the instance failed validation; nothing was written
            EntryAlreadyExist: a new instance's DN is already taken
            OperationError: the server refused the write

        """
        if validate:
            try:
                self.full_clean()
            except ValidationError as e:
                raise EntryInvalid(e.update_error_dict({})) from e
        if self._new:
            self._manager.add(self, controls=controls)
        else:
            self._manager.modify(self, controls=controls)
        self._new = False
        self._original = self.to_db()[1]

    def reload(self) -> None:
        """
        Load the entry again from LDAP, throwing away unsaved changes and
        cached associations.

        Raises:
            DoesNotExist: the entry is gone.

        """
        fresh = self._manager.get_by_dn(cast("str", self.dn))
        for field in cast("Options", self._meta).fields:
            name = cast("str", field.name)
            setattr(self, name, getattr(fresh, name))
        self._dn = fresh.dn
        self._new = False
        self._original = fresh._original
        for proxy in self._association_proxies.values():
            proxy.reset()

    def exists(self) -> bool:
        if not self.dn:
            return False
        return self._manager.exists(self.dn)

    def delete(self) -> None:
        """
        Delete the entry from LDAP.  The instance becomes new again, so
        saving it would add it back.
        """
        self._manager.delete_obj(self)
        self._new = True
        self._original = None

    # ------------------------
    # Validation
    # ------------------------

    def clean(self) -> None:
        """
        Override to add checks that involve several fields.  A
        ``ValidationError`` raised here is reported under
        ``NON_FIELD_ERRORS``.
        """

    def clean_fields(self, exclude: list[str] | None = None) -> None:
        """
        Convert and validate each field's value in place.

        Raises:
            ValidationError: keyed by field name.

        """
        exclude = exclude or []
        errors: dict[str, Any] = {}
        for field in cast("Options", self._meta).fields:
            name = cast("str", field.name)
            if name in exclude:
                continue
            value = getattr(self, name)
            if field.blank and field.is_empty(value):
                continue
            try:
                setattr(self, name, field.clean(value, self))
            except ValidationError as e:
                errors[name] = e.error_list
        if errors:
            raise ValidationError(errors)

    def full_clean(self, exclude: list[str] | None = None) -> None:
        """
        Validate the instance: clean each field, run :py:meth:`clean`, and
        check that every attribute our object classes require has a value.
        All three always run, and everything they find is reported together.

        Keyword Args:
            exclude: field names to skip

        Raises:
            ValidationError: with an ``error_dict`` of everything wrong.

        """
        exclude = list(exclude or [])
        errors: dict[str, Any] = {}
        for check in (lambda: self.clean_fields(exclude=exclude), self.clean):
            try:
                check()
            except ValidationError as e:
                errors = e.update_error_dict(errors)
        try:
            validate_required_values(self, self._manager.schema)
        except ValidationError as e:
            for name, messages in e.error_dict.items():
                if name not in exclude:
                    errors.setdefault(name, []).extend(messages)
        if errors:
            raise ValidationError(errors)
