"""
Schema-driven validation of model instances.

:py:meth:`ldapmapper.models.Model.full_clean` runs
:py:func:`validate_required_values` alongside the usual field cleaning, so an
entry that is missing an attribute one of its object classes requires (MUST)
is rejected before we ever send it to the server.
"""

from typing import TYPE_CHECKING, Any, cast

from django.core.exceptions import ValidationError
from django.utils.translation import gettext_lazy as _

if TYPE_CHECKING:
    from .models import Model
    from .options import Options
    from .schema import SchemaRegistry


def required_attribute_message(
    attribute: str, object_class: str, aliases: list[str]
) -> str:
    """
    Build the error message for a missing required attribute, e.g.
    ``cn is required attribute by objectClass 'person': aliases: commonName``.
    """
    message = _("%(attribute)s is required attribute by objectClass '%(class)s'") % {
        "attribute": attribute,
        "class": object_class,
    }
    if aliases:
        message = _("%(message)s: aliases: %(aliases)s") % {
            "message": message,
            "aliases": ", ".join(aliases),
        }
    return str(message)


def _value_for(
    instance: "Model", names: list[str]
) -> tuple[str | None, bool]:
    """
    Find the field for any of ``names`` and report whether it holds a value.

    Returns:
        ``(field name, has value)``; the field name is ``None`` if no field
        maps any of the names.

    """
    options = cast("Options", instance._meta)
    for name in names:
        field = options.field_for_attribute(name)
        if field is None:
            continue
        value = getattr(instance, cast("str", field.name), None)
        stored = field.to_db_value(value)[field.ldap_attribute]
        return cast("str", field.name), bool(stored)
    return None, False


def validate_required_values(instance: "Model", schema: "SchemaRegistry") -> None:
    """
    Check that ``instance`` has a value for every attribute its object
    classes require.

    Each missing attribute is reported once, against the first class in the
    entry's class list (or its superclasses) that requires it.

    Args:
        instance: the model instance to check
        schema: the server schema

    Raises:
        ValidationError: with one message per missing attribute, keyed by the
            field name (or the attribute name, if no field maps it)

    """
    errors: dict[str, list[Any]] = {}
    seen: set[str] = set()
    for object_class in instance.classes():
        for attribute, owner in schema.must(object_class):
            if attribute.lower() in seen:
                continue
            seen.add(attribute.lower())
            aliases = schema.attribute_aliases(attribute)
            field_name, has_value = _value_for(instance, [attribute, *aliases])
            if has_value:
                continue
            errors.setdefault(field_name or attribute, []).append(
                ValidationError(
                    required_attribute_message(attribute, owner, aliases),
                    code="required",
                )
            )
    if errors:
        raise ValidationError(errors)
