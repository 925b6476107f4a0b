"""
LDAP mapper type definitions.

This module provides type aliases for LDAP data structures and operations,
using Python 3.10+ type hinting conventions.
"""

from typing import Any

#: ``(operation, attribute, values)`` where operation is ``add``, ``delete``
#: or ``replace``
EntryOperation = tuple[str, str, list[Any]]
EntryOperations = list[EntryOperation]
LDAPData = tuple[str, dict[str, list[bytes]]]
ModifyModlist = list[tuple[int, str, list[bytes] | None]]
AddModlist = list[tuple[str, list[bytes]]]
#: Anything :py:func:`ldapmapper.filters.compile_filter` accepts
FilterExpression = str | dict[str, Any] | list[Any] | tuple[Any, ...] | None
