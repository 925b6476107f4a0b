"""
Model fields.

A field ties one Python attribute of a model to one LDAP attribute.  LDAP
always speaks in lists of byte strings; each field class decides what Python
value that list becomes on the model instance (:py:meth:`Field.from_db_value`)
and how to turn it back (:py:meth:`Field.to_db_value`).

Which attributes an entry *must* have is the server schema's business, not
the field's: :py:mod:`ldapmapper.validation` checks the MUST attributes of the
entry's object classes.  So every field is optional by default, except the
primary key, whose value names the entry.
"""

import itertools
from collections.abc import Callable, Sequence
from functools import total_ordering
from typing import TYPE_CHECKING, Any, cast

from django.core import validators as dj_validators
from django.core.exceptions import ValidationError
from django.db.models.fields import NOT_PROVIDED
from django.utils.translation import gettext_lazy as _

if TYPE_CHECKING:
    from .models import Model

#: Type alias for field validators
Validator = Callable[[Any], None]

_creation_counter = itertools.count()


@total_ordering
class Field:
    """
    Base class for model fields.

    Keyword Args:
        verbose_name: a human readable name; derived from the field name if
            not given
        name: the field name; normally set from the model class attribute
        primary_key: this field's attribute forms the entry's RDN
        max_length: reject string values longer than this
        blank: allow the field to have no value at all.  ``False`` for the
            primary key.
        default: the value (or a callable returning it) new instances get
        editable: ``False`` to never write this attribute back to LDAP
        validators: extra validators, run on every non-empty value
        error_messages: overrides for :py:attr:`default_error_messages`
        db_column: the LDAP attribute name, if it is not the field name

    """

    #: Values that store nothing in LDAP
    empty_values: tuple[Any, ...] = tuple(dj_validators.EMPTY_VALUES)
    default_validators: tuple[Validator, ...] = ()
    default_error_messages: dict[str, Any] = {  # noqa: RUF012
        "blank": _("This field cannot be blank."),
    }

    def __init__(  # noqa: PLR0913
        self,
        verbose_name: str | None = None,
        name: str | None = None,
        primary_key: bool = False,
        max_length: int | None = None,
        blank: bool = True,
        default: Any = NOT_PROVIDED,
        editable: bool = True,
        validators: Sequence[Validator] = (),
        error_messages: dict[str, str] | None = None,
        db_column: str | None = None,
    ) -> None:
        self.name = name
        self.verbose_name = verbose_name
        self.primary_key = primary_key
        self.max_length = max_length
        self.blank = blank and not primary_key
        self.default = default
        self.editable = editable
        self.db_column = db_column
        self.model: type[Model] | None = None
        # Fields sort in the order they were declared
        self.creation_counter = next(_creation_counter)

        self.validators: list[Validator] = [*self.default_validators, *validators]
        if max_length is not None:
            self.validators.append(dj_validators.MaxLengthValidator(max_length))

        self.error_messages: dict[str, Any] = {}
        for klass in reversed(type(self).__mro__):
            self.error_messages.update(getattr(klass, "default_error_messages", {}))
        self.error_messages.update(error_messages or {})

    def __repr__(self) -> str:
        return f"<{type(self).__name__}: {self.name}>"

    def __lt__(self, other: "Field") -> bool:
        if isinstance(other, Field):
            return self.creation_counter < other.creation_counter
        return NotImplemented

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Field):
            return self.creation_counter == other.creation_counter
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.creation_counter)

    def contribute_to_class(self, cls, name: str) -> None:
        self.name = self.name or name
        if self.verbose_name is None:
            self.verbose_name = self.name.replace("_", " ")
        self.model = cls
        cls._meta.add_field(self)

    @property
    def ldap_attribute(self) -> str:
        """
        The LDAP attribute this field maps: ``db_column`` if set, otherwise
        the field name.
        """
        return cast("str", self.db_column or self.name)

    def get_default(self) -> Any:
        if self.default is NOT_PROVIDED:
            return None
        if callable(self.default):
            return self.default()
        return self.default

    def is_empty(self, value: Any) -> bool:
        """
        Return ``True`` if ``value`` would store nothing in LDAP.
        """
        if isinstance(value, (list, tuple)):
            return all(v in self.empty_values for v in value)
        return value in self.empty_values

    def value_from_object(self, obj: "Model") -> Any:
        return getattr(obj, cast("str", self.name))

    # ------------------------
    # Validation
    # ------------------------

    def to_python(self, value: Any) -> Any:
        return value

    def _run_validators(self, value: Any) -> None:
        errors: list[ValidationError] = []
        for validator in self.validators:
            try:
                validator(value)
            except ValidationError as e:  # noqa: PERF203
                if e.code in self.error_messages:
                    e.message = self.error_messages[e.code]
                errors.extend(e.error_list)
        if errors:
            raise ValidationError(errors)

    def clean(self, value: Any, model_instance: "Model") -> Any:  # noqa: ARG002
        """
        Convert ``value`` to this field's Python type and validate it.

        Returns:
            The converted value.

        Raises:
            ValidationError: the value can't be converted, is empty on a
                field that may not be blank, or fails a validator.

        """
        value = self.to_python(value)
        if self.is_empty(value):
            if not self.blank:
                raise ValidationError(self.error_messages["blank"], code="blank")
            return value
        self._run_validators(value)
        return value

    # ------------------------
    # LDAP conversion
    # ------------------------

    def from_db_value(self, value: list[bytes]) -> Any:
        """
        Convert the values python-ldap gave us into this field's Python
        value.  The base implementation decodes them all as UTF-8.
        """
        return [b.decode("utf-8") if isinstance(b, bytes) else b for b in value]

    def to_db_value(self, value: Any) -> dict[str, list[bytes]]:
        """
        Convert ``value`` into ``{attribute: [bytes, ...]}``.

        An empty value comes out as ``{attribute: []}``, not as nothing, so
        :py:class:`~ldapmapper.managers.Modlist` can see the attribute needs
        deleting.
        """
        if value is None:
            values: list[Any] = []
        elif isinstance(value, (list, tuple)):
            values = list(value)
        else:
            values = [value]
        return {
            self.ldap_attribute: [
                v.encode("utf-8") if isinstance(v, str) else v
                for v in values
                if v not in self.empty_values
            ]
        }


class CharField(Field):
    """
    A single-valued string attribute.  When LDAP sends several values, the
    first one wins.
    """

    def to_python(self, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def from_db_value(self, value: list[bytes]) -> str | None:
        decoded = super().from_db_value(value)
        return decoded[0] if decoded else None


class CharListField(CharField):
    """
    A multi-valued string attribute, held as a list of strings.  A string
    assigned to it is split into lines.
    """

    def get_default(self) -> list[str]:
        return list(super().get_default() or [])

    def from_db_value(self, value: list[bytes]) -> list[str]:  # type: ignore[override]
        return Field.from_db_value(self, value)

    def to_python(self, value: Any) -> list[str]:  # type: ignore[override]
        if not value:
            return []
        if isinstance(value, str):
            return value.splitlines()
        return [CharField.to_python(self, v) for v in value]

    def _run_validators(self, value: Any) -> None:
        for item in value:
            super()._run_validators(item)


class IntegerField(Field):
    """
    An integer attribute, stored in LDAP as its decimal string.
    """

    default_error_messages = {  # noqa: RUF012
        "invalid": _("'%(value)s' value must be an integer."),
    }

    def to_python(self, value: Any) -> int | None:
        """
        Raises:
            ValidationError: ``value`` is not an integer.
        """
        if value in self.empty_values:
            return None
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                self.error_messages["invalid"], code="invalid", params={"value": value}
            ) from e

    def from_db_value(self, value: list[bytes]) -> int | None:
        decoded = super().from_db_value(value)
        return self.to_python(decoded[0]) if decoded else None

    def to_db_value(self, value: int | None) -> dict[str, list[bytes]]:
        return super().to_db_value(None if value is None else str(value))


class BooleanField(Field):
    """
    A boolean attribute.  The LDAP Boolean syntax (RFC 4517, section 3.3.3)
    stores the strings ``TRUE`` and ``FALSE``.
    """

    default_error_messages = {  # noqa: RUF012
        "invalid": _("'%(value)s' value must be either True or False."),
    }

    LDAP_TRUE = "TRUE"
    LDAP_FALSE = "FALSE"

    def to_python(self, value: Any) -> bool | None:
        """
        Raises:
            ValidationError: ``value`` is not recognizably true or false.
        """
        if value in self.empty_values:
            return None
        if isinstance(value, bool):
            return value
        if str(value).lower() in ("true", "t", "1"):
            return True
        if str(value).lower() in ("false", "f", "0"):
            return False
        raise ValidationError(
            self.error_messages["invalid"], code="invalid", params={"value": value}
        )

    def from_db_value(self, value: list[bytes]) -> bool | None:
        decoded = super().from_db_value(value)
        if not decoded:
            return None
        flag = decoded[0].upper()
        if flag not in (self.LDAP_TRUE, self.LDAP_FALSE):
            msg = f"{self.name}: {decoded[0]!r} is not an LDAP Boolean"
            raise ValueError(msg)
        return flag == self.LDAP_TRUE

    def to_db_value(self, value: bool | None) -> dict[str, list[bytes]]:
        if value is None:
            return super().to_db_value(None)
        return super().to_db_value(self.LDAP_TRUE if value else self.LDAP_FALSE)


class BinaryField(Field):
    """
    A single-valued binary attribute, such as ``jpegPhoto`` or
    ``userCertificate``.  Values are kept as the raw bytes LDAP sent and are
    never decoded.
    """

    default_error_messages = {  # noqa: RUF012
        "invalid": _("'%(value)s' value must be bytes."),
    }

    def to_python(self, value: Any) -> bytes | None:
        if value is None or isinstance(value, bytes):
            return value
        if isinstance(value, bytearray):
            return bytes(value)
        raise ValidationError(
            self.error_messages["invalid"], code="invalid", params={"value": value}
        )

    def from_db_value(self, value: list[bytes]) -> bytes | None:
        return value[0] if value else None

    def to_db_value(self, value: bytes | bytearray | None) -> dict[str, list[bytes]]:
        return {self.ldap_attribute: [bytes(value)] if value else []}
