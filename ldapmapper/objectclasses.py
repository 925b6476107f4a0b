"""
Object class management for model instances.

:py:class:`ObjectClassMixin` is mixed into :py:class:`ldapmapper.models.Model`.
Every change to an entry's ``objectclass`` attribute goes through
:py:meth:`ObjectClassMixin.replace_class`, which checks the proposed classes
against the server schema and the model's required classes before touching
the entry.  A rejected change leaves the entry exactly as it was.
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, cast

from .exceptions import ObjectClassError, RequiredObjectClassMissed

if TYPE_CHECKING:
    from .managers import LdapManager
    from .options import Options
    from .schema import SchemaRegistry

logger = logging.getLogger(__name__)


def flatten_class_names(names: Iterable[Any]) -> list[Any]:
    """
    Flatten ``names``, which may mix single names and lists of names, into
    one list.  Case-insensitive duplicates are dropped; the first spelling
    wins.  Non-string values are passed through untouched so that callers
    can report them.
    """
    flat: list[Any] = []
    seen: set[str] = set()
    for name in names:
        if isinstance(name, (list, tuple, set, frozenset)):
            items: Iterable[Any] = name
        else:
            items = [name]
        for item in items:
            if isinstance(item, str):
                if item.lower() in seen:
                    continue
                seen.add(item.lower())
            flat.append(item)
    return flat


class ObjectClassMixin:
    """
    Methods for inspecting and changing the object classes of an entry.
    """

    _meta: "Options | None"
    objectclass: list[str]

    def _schema_registry(self) -> "SchemaRegistry":
        manager = cast("LdapManager", cast("Options", self._meta).base_manager)
        return manager.schema

    def classes(self) -> list[str]:
        """
        The entry's current object classes.
        """
        return list(self.objectclass or [])

    def has_class(self, name: str) -> bool:
        return name.lower() in {c.lower() for c in self.classes()}

    def add_class(self, *names: str | list[str]) -> None:
        """
        Add object classes to the entry.

        Raises:
            TypeError: a class name is not a string
            ObjectClassError: a class is not known to the server schema

        """
        self.replace_class(self.classes(), *names)

    def remove_class(self, *names: str | list[str]) -> None:
        """
        Remove object classes from the entry.

        Raises:
            TypeError: a class name is not a string
            RequiredObjectClassMissed: the model requires one of the classes

        """
        removed = flatten_class_names(names)
        self._assert_strings(removed)
        lowered = {name.lower() for name in removed}
        self.replace_class([c for c in self.classes() if c.lower() not in lowered])

    def replace_class(self, *names: str | list[str]) -> None:
        """
        Replace the entry's object classes with ``names``.

        The checks run in order, and all of them run before anything is
        changed:

        1. every name must be a string;
        2. every name must be known to the server schema;
        3. every class the model requires must still be there, either
           directly or as an ancestor of one of the new classes.

        The entry's ``objectclass`` attribute is only assigned if the new set
        of classes actually differs from the current one.

        Raises:
            TypeError: a class name is not a string
            ObjectClassError: a class is not known to the server schema
            RequiredObjectClassMissed: a required class would be lost

        """
        new_classes = flatten_class_names(names)
        self._assert_strings(new_classes)
        schema = self._schema_registry()
        self._assert_known(new_classes, schema)
        self._assert_required(new_classes, schema)
        if sorted(c.lower() for c in new_classes) != sorted(
            c.lower() for c in self.classes()
        ):
            logger.debug(
                "ldapmapper.objectclass.replace old=%s new=%s",
                ",".join(self.classes()),
                ",".join(new_classes),
            )
            self.objectclass = new_classes

    def ensure_recommended_classes(self) -> None:
        """
        Add any of the model's ``Meta.recommended_classes`` the entry does
        not have yet.
        """
        missing = [
            name
            for name in cast("Options", self._meta).recommended_classes
            if not self.has_class(name)
        ]
        if missing:
            self.add_class(missing)

    def ensure_required_classes(self) -> None:
        """
        Add any of the model's required classes the entry does not have yet.
        """
        missing = [
            name
            for name in cast("Options", self._meta).required_classes
            if not self.has_class(name)
        ]
        if missing:
            self.add_class(missing)

    @staticmethod
    def _assert_strings(names: list[Any]) -> None:
        invalid = [name for name in names if not isinstance(name, str)]
        if invalid:
            msg = "Value in objectClass array is not a String: " + ", ".join(
                f"{type(name).__name__}:{name!r}" for name in invalid
            )
            raise TypeError(msg)

    @staticmethod
    def _assert_known(names: list[str], schema: "SchemaRegistry") -> None:
        unknown = [name for name in names if not schema.has_object_class(name)]
        if unknown:
            msg = f"unknown objectClass in LDAP server: {', '.join(unknown)}"
            raise ObjectClassError(msg, unknown)

    def _assert_required(self, names: list[str], schema: "SchemaRegistry") -> None:
        lowered = {name.lower() for name in names}
        inherited: set[str] = set()
        for name in names:
            inherited |= schema.ancestors(name)
        missing = [
            required
            for required in cast("Options", self._meta).required_classes
            if required.lower() not in lowered and required.lower() not in inherited
        ]
        if missing:
            msg = f"Can't remove required objectClass: {', '.join(missing)}"
            raise RequiredObjectClassMissed(msg, missing)
