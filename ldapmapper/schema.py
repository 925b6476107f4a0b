"""
LDAP schema registry.

This module provides :py:class:`SchemaRegistry`, an immutable snapshot of the
object classes and attribute types a server publishes in its subschema
subentry.  The registry answers the questions the rest of ldapmapper needs:
which object classes exist, what each one requires (MUST) and allows (MAY)
through its whole superclass chain, which names alias an attribute type, and
which attributes hold binary data.

Registries are built once per server by
:py:meth:`ldapmapper.connection.LdapSession.load_schema` and cached by
:py:class:`ldapmapper.managers.LdapManager`; nothing mutates a registry after
it is built.
"""

import logging
from collections.abc import Iterable
from typing import Any, NamedTuple

from ldapmapper import ldap

logger = logging.getLogger(__name__)

#: Prefix of the syntax OIDs defined in RFC 4517
SYNTAX_PREFIX = "1.3.6.1.4.1.1466.115.121.1."

#: Syntaxes whose values are binary data: audio, binary, certificate,
#: certificate list, certificate pair, fax, JPEG, octet string and supported
#: algorithm
BINARY_SYNTAXES = frozenset(
    f"{SYNTAX_PREFIX}{number}" for number in (4, 5, 8, 9, 10, 23, 28, 40, 49)
)

#: Syntaxes that must be transferred with the ``;binary`` option (RFC 4522)
BINARY_REQUIRED_SYNTAXES = frozenset(
    f"{SYNTAX_PREFIX}{number}" for number in (8, 9, 10, 49)
)


def strip_options(name: str) -> str:
    """
    Remove attribute options from an attribute description, so
    ``userCertificate;binary`` becomes ``userCertificate``.
    """
    return name.split(";", 1)[0]


class ObjectClassInfo(NamedTuple):
    #: The primary name of the object class
    name: str
    oid: str
    #: Every name the object class is known by, primary name first
    names: tuple[str, ...]
    #: Direct superclasses, by name
    superclasses: tuple[str, ...]
    #: Attributes this class itself requires
    must: tuple[str, ...]
    #: Attributes this class itself allows
    may: tuple[str, ...]
    #: 0 = STRUCTURAL, 1 = ABSTRACT, 2 = AUXILIARY
    kind: int = 0


class AttributeTypeInfo(NamedTuple):
    #: The primary name of the attribute type
    name: str
    oid: str
    #: Every name the attribute type is known by, primary name first
    names: tuple[str, ...]
    #: The syntax OID declared on this attribute type, if any
    syntax: str | None
    #: The attribute type this one derives from, if any
    superior: str | None
    single_value: bool = False


class SchemaRegistry:
    """
    An immutable snapshot of an LDAP server's schema.

    All lookups are case-insensitive and accept either a name or an OID.
    Unknown names are not errors: :py:meth:`object_class` and
    :py:meth:`attribute` return ``None`` for them.

    Args:
        object_classes: the object class definitions
        attribute_types: the attribute type definitions

    """

    def __init__(
        self,
        object_classes: Iterable[ObjectClassInfo] = (),
        attribute_types: Iterable[AttributeTypeInfo] = (),
    ) -> None:
        self._object_classes: dict[str, ObjectClassInfo] = {}
        self._attribute_types: dict[str, AttributeTypeInfo] = {}
        for info in object_classes:
            for key in (*info.names, info.oid):
                self._object_classes[key.lower()] = info
        for info in attribute_types:
            for key in (*info.names, info.oid):
                self._attribute_types[key.lower()] = info
        # Filled in lazily; the registry itself never changes, so these can
        # only ever be filled with the same answer.
        self._ancestors: dict[str, frozenset[str]] = {}
        self._syntaxes: dict[str, str | None] = {}

    # ------------------------
    # Construction
    # ------------------------

    @classmethod
    def from_subschema(cls, subschema: "ldap.schema.SubSchema") -> "SchemaRegistry":
        """
        Build a registry from a parsed python-ldap
        :py:class:`ldap.schema.SubSchema`.
        """
        object_classes = []
        for oid in subschema.listall(ldap.schema.ObjectClass):
            element = subschema.get_obj(ldap.schema.ObjectClass, oid)
            names = tuple(element.names or (element.oid,))
            object_classes.append(
                ObjectClassInfo(
                    name=names[0],
                    oid=element.oid,
                    names=names,
                    superclasses=tuple(element.sup or ()),
                    must=tuple(element.must or ()),
                    may=tuple(element.may or ()),
                    kind=element.kind or 0,
                )
            )
        attribute_types = []
        for oid in subschema.listall(ldap.schema.AttributeType):
            element = subschema.get_obj(ldap.schema.AttributeType, oid)
            names = tuple(element.names or (element.oid,))
            attribute_types.append(
                AttributeTypeInfo(
                    name=names[0],
                    oid=element.oid,
                    names=names,
                    syntax=element.syntax,
                    superior=element.sup[0] if element.sup else None,
                    single_value=bool(element.single_value),
                )
            )
        return cls(object_classes, attribute_types)

    @classmethod
    def from_entry(cls, entry: dict[str, list[Any]]) -> "SchemaRegistry":
        """
        Build a registry from a raw subschema subentry, as returned by a
        search for its ``objectClasses`` and ``attributeTypes`` attributes.

        Args:
            entry: the attributes of the subschema subentry

        Returns:
            A new registry.

        """
        return cls.from_subschema(ldap.schema.SubSchema(entry, check_uniqueness=0))

    # ------------------------
    # Object classes
    # ------------------------

    def object_class(self, name: str) -> ObjectClassInfo | None:
        return self._object_classes.get(name.lower())

    def has_object_class(self, name: str) -> bool:
        return name.lower() in self._object_classes

    @property
    def object_class_names(self) -> list[str]:
        """
        The primary names of every object class in the registry, sorted.
        """
        return sorted({info.name for info in self._object_classes.values()})

    def ancestors(self, name: str) -> frozenset[str]:
        """
        Return the lower-cased names of every superclass of ``name``, all
        the way up the hierarchy.  ``name`` itself is not included.

        The superclass relation is a DAG; a class reachable through several
        paths is listed once, and a malformed schema with a cycle does not
        send us into a loop.

        Args:
            name: the object class to look up

        Returns:
            The set of ancestor names, empty if ``name`` is unknown.

        """
        key = name.lower()
        if key in self._ancestors:
            return self._ancestors[key]
        info = self.object_class(key)
        result: set[str] = set()
        if info:
            pending = list(info.superclasses)
            while pending:
                superclass = self.object_class(pending.pop())
                if superclass is None:
                    continue
                names = {n.lower() for n in superclass.names}
                if names & result:
                    continue
                result |= names
                pending.extend(superclass.superclasses)
            result -= {n.lower() for n in info.names}
        ancestors = frozenset(result)
        self._ancestors[key] = ancestors
        return ancestors

    def is_ancestor(self, ancestor: str, name: str) -> bool:
        """
        Return ``True`` if ``ancestor`` is a superclass of ``name``, directly
        or through other superclasses.
        """
        return ancestor.lower() in self.ancestors(name)

    def _chain(self, name: str) -> list[ObjectClassInfo]:
        info = self.object_class(name)
        if info is None:
            return []
        chain = [info]
        seen = {info.oid}
        pending = list(info.superclasses)
        while pending:
            superclass = self.object_class(pending.pop(0))
            if superclass is None or superclass.oid in seen:
                continue
            seen.add(superclass.oid)
            chain.append(superclass)
            pending.extend(superclass.superclasses)
        return chain

    def _collect(self, name: str, kind: str) -> list[tuple[str, str]]:
        result: list[tuple[str, str]] = []
        seen: set[str] = set()
        for info in self._chain(name):
            for attribute in getattr(info, kind):
                if attribute.lower() in seen:
                    continue
                seen.add(attribute.lower())
                result.append((attribute, info.name))
        return result

    def must(self, name: str) -> list[tuple[str, str]]:
        """
        Return the attributes required by ``name`` and its superclasses, as
        ``(attribute, owning class)`` pairs.  The class's own declarations
        come first.
        """
        return self._collect(name, "must")

    def may(self, name: str) -> list[tuple[str, str]]:
        """
        Return the attributes allowed by ``name`` and its superclasses, as
        ``(attribute, owning class)`` pairs.
        """
        return self._collect(name, "may")

    # ------------------------
    # Attribute types
    # ------------------------

    def attribute(self, name: str) -> AttributeTypeInfo | None:
        return self._attribute_types.get(strip_options(name).lower())

    def attribute_aliases(self, name: str) -> list[str]:
        """
        Return the other names of the attribute type ``name``, e.g. ``["cn"]``
        for ``commonName``.
        """
        info = self.attribute(name)
        if info is None:
            return []
        wanted = strip_options(name).lower()
        return [n for n in info.names if n.lower() != wanted]

    def syntax(self, name: str) -> str | None:
        """
        Return the syntax OID of ``name``, following ``SUP`` to the attribute
        type that declares it.
        """
        key = strip_options(name).lower()
        if key in self._syntaxes:
            return self._syntaxes[key]
        syntax = None
        info = self.attribute(key)
        seen: set[str] = set()
        while info is not None and info.oid not in seen:
            seen.add(info.oid)
            if info.syntax:
                syntax = info.syntax
                break
            info = self.attribute(info.superior) if info.superior else None
        self._syntaxes[key] = syntax
        return syntax

    def is_binary(self, name: str) -> bool:
        return self.syntax(name) in BINARY_SYNTAXES

    def is_binary_required(self, name: str) -> bool:
        return self.syntax(name) in BINARY_REQUIRED_SYNTAXES

    def __repr__(self) -> str:
        return (
            f"<SchemaRegistry: {len(self.object_class_names)} object classes, "
            f"{len({i.oid for i in self._attribute_types.values()})} attribute types>"
        )
