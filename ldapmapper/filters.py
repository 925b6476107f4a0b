"""
LDAP search filter compiler.

:py:func:`compile_filter` turns the structured filter expressions accepted
throughout ldapmapper into RFC 4515 filter strings:

.. code-block:: python

    >>> compile_filter({"uid": "bob", "objectClass": "*"})
    '(&(objectClass=*)(uid=bob))'
    >>> compile_filter(["and", {"objectClass": "*", "uid": ["or", "bob", "alice"]}])
    '(&(objectClass=*)(|(uid=bob)(uid=alice)))'
    >>> compile_filter([["gidNumber", "100001"], ["objectClass", "person"]])
    '(&(gidNumber=100001)(objectClass=person))'

Accepted forms:

* ``None`` or a blank string: no filter at all (``None``)
* a string: a raw filter, passed through unescaped, parenthesized if needed
* a mapping of attribute to value or list of values
* a list starting with an operator (``and``, ``&``, ``or``, ``|``) followed
  by operands
* a list of ``[attribute, value]`` pairs, or a single such pair

``["not", "(uid=bob)"]`` is not a pair: a value that is itself a
parenthesized filter means the head was meant as an operator, and unknown
operators raise :py:exc:`~ldapmapper.exceptions.InvalidFilterOperator`.

The operator in effect propagates into mappings and multi-valued lists, so
``["or", {"uid": ["bob", "alice"]}]`` matches either uid.  Mapping keys are
emitted in sorted order, so equal mappings always compile to the same string.
"""

import re
from collections.abc import Mapping
from typing import Any

from .exceptions import InvalidFilterOperator
from .typing import FilterExpression

#: Operator tokens, mapped to their filter syntax
OPERATORS: dict[str, str] = {
    "and": "&",
    "&": "&",
    "or": "|",
    "|": "|",
}

#: Characters that must be escaped inside an assertion value
SPECIAL_CHARACTERS = re.compile(r"[=,*()\\\x00]")


def _escape(match: re.Match) -> str:
    return "\\%02X" % ord(match.group())


def escape_filter_value(value: Any) -> str:
    """
    Escape ``value`` so it can be used as an assertion value in a filter.

    ``=``, ``,``, ``*``, ``(``, ``)``, ``\\`` and NUL become ``\\XX`` with two
    uppercase hex digits; everything else is left alone.  ``bytes`` that are
    not valid UTF-8 are escaped byte by byte.

    Args:
        value: the value to escape

    Returns:
        The escaped value.

    """
    if isinstance(value, bytes):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return "".join(
                "\\%02X" % byte
                if byte > 0x7F or chr(byte) in "=,*()\\\x00"
                else chr(byte)
                for byte in value
            )
    elif isinstance(value, bool):
        value = "TRUE" if value else "FALSE"
    elif not isinstance(value, str):
        value = str(value)
    return SPECIAL_CHARACTERS.sub(_escape, value)


def is_operator(token: Any) -> bool:
    return isinstance(token, str) and token.lower() in OPERATORS


def normalize_operator(token: Any, expression: Any = None) -> str:
    """
    Return the filter syntax for an operator token.

    Raises:
        InvalidFilterOperator: ``token`` is not one of ``and``, ``&``, ``or``
            or ``|``.

    """
    if not is_operator(token):
        raise InvalidFilterOperator(token, expression)
    return OPERATORS[token.lower()]


def _combine(operator: str, fragments: list[str | None]) -> str | None:
    fragments = [fragment for fragment in fragments if fragment]
    if not fragments:
        return None
    if len(fragments) == 1:
        return fragments[0]
    return f"({operator}{''.join(fragments)})"


def _compile_raw(value: str) -> str | None:
    value = value.strip()
    if not value:
        return None
    if not value.startswith("("):
        value = f"({value})"
    return value


def _compile_clause(attribute: str, value: Any) -> str | None:
    if value is None:
        return None
    if value == "*":
        return f"({attribute}=*)"
    return f"({attribute}={escape_filter_value(value)})"


def _compile_pair(attribute: Any, value: Any, operator: str) -> str | None:
    if isinstance(value, Mapping):
        # {"or": {...}}: the key names the operator for the nested mapping
        return _compile_mapping(value, normalize_operator(attribute, value))
    if isinstance(value, (list, tuple, set, frozenset)):
        if isinstance(value, (set, frozenset)):
            values = sorted(value, key=str)
        else:
            values = list(value)
        if values and is_operator(values[0]):
            operator = normalize_operator(values.pop(0))
        return _combine(
            operator, [_compile_clause(str(attribute), v) for v in values]
        )
    return _compile_clause(str(attribute), value)


def _compile_mapping(mapping: Mapping, operator: str) -> str | None:
    return _combine(
        operator,
        [
            _compile_pair(key, mapping[key], operator)
            for key in sorted(mapping, key=str)
        ],
    )


def _looks_like_pair(sequence: list[Any]) -> bool:
    first = sequence[0]
    return (
        isinstance(first, str)
        and "=" not in first
        and not first.lstrip().startswith("(")
    )


def _looks_like_filter(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return any(_looks_like_filter(v) for v in value)
    if not isinstance(value, str):
        return False
    value = value.strip()
    return value.startswith("(") and value.endswith(")") and "=" in value


def _compile_component(component: Any, operator: str) -> str | None:
    if component is None:
        return None
    if isinstance(component, str):
        return _compile_raw(component)
    if isinstance(component, Mapping):
        return _compile_mapping(component, operator)
    if isinstance(component, (list, tuple)):
        return _compile_sequence(list(component), operator)
    msg = f"Unsupported filter component: {component!r}"
    raise TypeError(msg)


def _compile_sequence(sequence: list[Any], operator: str) -> str | None:
    if not sequence:
        return None
    if is_operator(sequence[0]):
        operator = normalize_operator(sequence[0])
        return _combine(
            operator, [_compile_component(c, operator) for c in sequence[1:]]
        )
    if _looks_like_pair(sequence):
        if len(sequence) != 2:  # noqa: PLR2004
            # ["xxx", {...}, {...}] can only be a group with a bad operator
            raise InvalidFilterOperator(sequence[0], sequence)
        if _looks_like_filter(sequence[1]):
            # ["not", "(uid=bob)"]: a group whose operator we don't support
            raise InvalidFilterOperator(sequence[0], sequence)
        return _compile_pair(sequence[0], sequence[1], operator)
    return _combine(operator, [_compile_component(c, operator) for c in sequence])


def compile_filter(expression: FilterExpression) -> str | None:
    """
    Compile a structured filter expression into an LDAP filter string.

    Args:
        expression: the expression to compile; see the module documentation
            for the accepted forms

    Raises:
        InvalidFilterOperator: the expression names an operator other than
            ``and``, ``&``, ``or`` or ``|``
        TypeError: the expression contains something we can't compile

    Returns:
        The filter string, or ``None`` if ``expression`` is empty.

    """
    if expression is None:
        return None
    return _compile_component(expression, "&")
