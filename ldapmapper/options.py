"""
Model metadata.

Every model class gets an :py:class:`Options` instance as ``Model._meta``,
built from its ``Meta`` inner class.  It records where the model's entries
live, which object classes they carry, how to sort them, and the fields and
associations declared on the model.
"""

from bisect import insort
from typing import TYPE_CHECKING, Any, cast

from django.core.exceptions import FieldDoesNotExist, ImproperlyConfigured
from django.utils.functional import cached_property
from django.utils.text import camel_case_to_spaces, format_lazy

from .fields import CharListField
from .managers import LdapManager

if TYPE_CHECKING:
    from .associations import BelongsTo
    from .fields import Field
    from .models import Model

#: What a model's ``Meta`` class may set, and the default for each
META_DEFAULTS: dict[str, Any] = {
    # The key into settings.LDAP_SERVERS
    "ldap_server": "default",
    # "server_side_sort" asks the server to sort ordered searches
    "ldap_options": [],
    "manager_class": LdapManager,
    # Defaults to the server's basedn
    "basedn": None,
    # The structural class; searches only find entries that have it
    "objectclass": None,
    # Further classes every entry must have
    "extra_objectclasses": [],
    # Classes new entries should get, but which may be removed later
    "recommended_classes": [],
    # base, one or sub
    "scope": "sub",
    # Field names, "-" prefixed for descending
    "ordering": [],
    # The attribute holding a user's login name, for authenticate()
    "userid_attribute": "uid",
    "verbose_name": None,
    "verbose_name_plural": None,
}


class Options:
    """
    Metadata for a model class, available as ``Model._meta``.

    Args:
        meta: the model's ``Meta`` class, or ``None``

    """

    def __init__(self, meta) -> None:
        self.meta = meta
        for name, default in META_DEFAULTS.items():
            setattr(self, name, list(default) if isinstance(default, list) else default)
        # Filled in as the metaclass builds the model
        self.model: type[Model] | None = None
        self.object_name: str | None = None
        self.model_name: str | None = None
        self.concrete_model: type[Model] | None = None
        self.base_manager: LdapManager | None = None
        #: The field with ``primary_key=True``
        self.pk: Field | None = None
        self.local_fields: list[Field] = []
        self.associations: list[BelongsTo] = []

    def __repr__(self) -> str:
        return f"<Options for {self.object_name}>"

    def contribute_to_class(self, cls: type["Model"], name: str) -> None:  # noqa: ARG002
        """
        Install ourselves on ``cls`` and apply its ``Meta`` settings.

        Raises:
            TypeError: ``Meta`` sets something we don't know about.

        """
        cls._meta = self
        self.model = cls
        self.object_name = cls.__name__
        self.model_name = cls.__name__.lower()
        if self.meta is not None:
            declared = {k for k in vars(self.meta) if not k.startswith("_")}
            unknown = sorted(declared - set(META_DEFAULTS))
            if unknown:
                msg = f"{cls.__name__}.Meta got invalid attribute(s): {', '.join(unknown)}"
                raise TypeError(msg)
            for attr_name in META_DEFAULTS:
                # hasattr() so that Meta classes can inherit settings
                if hasattr(self.meta, attr_name):
                    setattr(self, attr_name, getattr(self.meta, attr_name))
        del self.meta
        if self.verbose_name is None:
            self.verbose_name = camel_case_to_spaces(cls.__name__)
        if self.verbose_name_plural is None:
            self.verbose_name_plural = format_lazy("{}s", self.verbose_name)

    def _prepare(self, model: type["Model"]) -> None:
        """
        Check the finished field list and add the ``objectclass`` field.

        Raises:
            ImproperlyConfigured: no field is the primary key, or a field
                maps ``objectClass`` itself.

        """
        if self.pk is None:
            msg = f"{self.object_name} has no primary key field"
            raise ImproperlyConfigured(msg)
        if self.field_for_attribute("objectclass") is not None:
            msg = (
                f"{self.object_name}: the objectclass field is added "
                "automatically and must not be declared"
            )
            raise ImproperlyConfigured(msg)
        model.add_to_class("objectclass", CharListField("object classes"))

    def add_field(self, field: "Field") -> None:
        insort(self.local_fields, field)
        if self.pk is None and field.primary_key:
            self.pk = field

    def add_association(self, association: "BelongsTo") -> None:
        self.associations.append(association)

    @property
    def required_classes(self) -> list[str]:
        """
        The object classes every entry of this model must carry:
        :py:attr:`objectclass` followed by :py:attr:`extra_objectclasses`,
        with case-insensitive duplicates removed.
        """
        classes: list[str] = []
        for name in [self.objectclass, *self.extra_objectclasses]:
            if name and name.lower() not in {c.lower() for c in classes}:
                classes.append(name)
        return classes

    # These are only safe to use once the model class is complete

    @cached_property
    def fields(self) -> list["Field"]:
        return list(self.local_fields)

    @cached_property
    def fields_map(self) -> dict[str, "Field"]:
        return {cast("str", field.name): field for field in self.fields}

    @cached_property
    def attributes(self) -> list[str]:
        """
        The LDAP attributes of all our fields; what we ask the server for
        when we search.
        """
        return [field.ldap_attribute for field in self.fields]

    def field_for_attribute(self, attribute: str) -> "Field | None":
        """
        Return the field that maps the LDAP attribute ``attribute``, ignoring
        case and attribute options, or ``None`` if no field does.
        """
        wanted = attribute.split(";", 1)[0].lower()
        for field in self.local_fields:
            if field.ldap_attribute.lower() == wanted:
                return field
        return None

    def get_field(self, field_name: str) -> "Field":
        """
        Raises:
            FieldDoesNotExist: we have no field called ``field_name``.
        """
        try:
            return self.fields_map[field_name]
        except KeyError as e:
            msg = f"{self.object_name} has no field named '{field_name}'"
            raise FieldDoesNotExist(msg) from e

    def get_association(self, name: str) -> "BelongsTo":
        """
        Raises:
            FieldDoesNotExist: we have no association called ``name``.
        """
        for association in self.associations:
            if association.name == name:
                return association
        msg = f"{self.object_name} has no association named '{name}'"
        raise FieldDoesNotExist(msg)
