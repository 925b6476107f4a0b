"""
LDAP server controls.

Only the server-side sort request control (RFC 2891) lives here for now.  Its
value is a BER-encoded ``SEQUENCE OF SortKey``, which python-ldap does not
build for us, so we encode it with pyasn1.
"""

from typing import ClassVar

from ldap.controls import LDAPControl
from pyasn1.codec.ber import encoder  # type: ignore[import]
from pyasn1.type import namedtype, tag, univ  # type: ignore[import]

#: OID of the sort request control; 389 Directory Server, OpenLDAP
#: (with sssvlv) and Active Directory all use this one
SORT_REQUEST_OID = "1.2.840.113556.1.4.473"


def _context_tag(number: int) -> tag.Tag:
    return tag.Tag(tag.tagClassContext, tag.tagFormatSimple, number)


class SortKey(univ.Sequence):
    """
    ``SortKey ::= SEQUENCE { attributeType, orderingRule [0] OPTIONAL,
    reverseOrder [1] BOOLEAN DEFAULT FALSE }``
    """

    componentType: ClassVar[namedtype.NamedTypes] = namedtype.NamedTypes(  # noqa: N815
        namedtype.NamedType("attributeType", univ.OctetString()),
        namedtype.OptionalNamedType(
            "orderingRule",
            univ.OctetString().subtype(explicitTag=_context_tag(0)),
        ),
        namedtype.DefaultedNamedType(
            "reverseOrder",
            univ.Boolean(False).subtype(explicitTag=_context_tag(1)),  # noqa: FBT003
        ),
    )


class SortKeyList(univ.SequenceOf):
    componentType: ClassVar[SortKey] = SortKey()  # noqa: N815


def parse_sort_key(key: str) -> tuple[str, bool, str | None]:
    """
    Split an ordering key into ``(attribute, reverse, ordering_rule)``.

    ``-cn`` sorts by ``cn`` descending; ``cn:caseIgnoreOrderingMatch`` names
    the matching rule to sort with.
    """
    reverse = key.startswith("-")
    attribute = key[1:] if reverse else key
    attribute, _, rule = attribute.partition(":")
    return attribute, reverse, rule or None


def encode_sort_keys(keys: list[str]) -> bytes:
    """
    BER-encode ``keys`` (see :py:func:`parse_sort_key`) as the value of a
    sort request control.  No keys gives an empty value.
    """
    if not keys:
        return b""
    sort_keys = SortKeyList()
    for key in keys:
        attribute, reverse, rule = parse_sort_key(key)
        sort_key = SortKey()
        sort_key.setComponentByName(
            "attributeType", univ.OctetString(attribute.encode("utf-8"))
        )
        if rule:
            sort_key.setComponentByName(
                "orderingRule",
                univ.OctetString(rule.encode("utf-8")).subtype(
                    explicitTag=_context_tag(0)
                ),
            )
        if reverse:
            sort_key.setComponentByName(
                "reverseOrder",
                univ.Boolean(True).subtype(explicitTag=_context_tag(1)),  # noqa: FBT003
            )
        sort_keys.append(sort_key)
    return encoder.encode(sort_keys)


class ServerSideSortControl(LDAPControl):
    """
    Ask the server to sort search results for us.

    Args:
        keys: ordering keys, e.g. ``["sn", "-uidNumber"]``

    Keyword Args:
        criticality: fail the search if the server can't sort

    """

    controlType = SORT_REQUEST_OID  # noqa: N815

    def __init__(self, keys: list[str], criticality: bool = False) -> None:
        self.keys = list(keys)
        super().__init__(SORT_REQUEST_OID, criticality, encode_sort_keys(self.keys))
