# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Test helpers: Django settings, a schema fixture and the fake directory our
tests run against.

The directory is served by python-ldap-faker.  Its entries are loaded from
``directory.json`` beside this module, and a subschema subentry built from
:py:data:`SCHEMA_ENTRY` is added to them.  :py:class:`DirectoryLDAPObject`
supplies the few ``LDAPObject`` methods ldapmapper calls that
:py:class:`ldap_faker.FakeLDAPObject` does not implement.

Use :py:class:`FakeLDAPMixin` in a :py:class:`unittest.TestCase` to get a
fresh copy of the directory for every test.
"""

from typing import Any
from unittest.mock import patch

import django
import ldap
from django.conf import settings
from ldap_faker import FakeLDAP, FakeLDAPObject, LDAPServerFactory, ObjectStore
from ldap_faker.faker import needs_bind, record_call
from ldap_faker.unittest import LDAPFakerMixin

from ldapmapper.managers import LdapManager

ADMIN_DN = "cn=admin,dc=example,dc=com"
ADMIN_PASSWORD = "admin"

LDAP_SERVERS = {
    "default": {
        "basedn": "dc=example,dc=com",
        "read": {
            "host": "ldap.example.com",
            "port": 389,
            "method": "plain",
            "bind": "simple",
            "user": ADMIN_DN,
            "password": ADMIN_PASSWORD,
            "timeout": 15.0,
            "sizelimit": 1000,
            "follow_referrals": False,
        },
        "write": {
            "host": "ldap.example.com",
            "port": 389,
            "method": "tls",
            "bind": "simple",
            "user": ADMIN_DN,
            "password": ADMIN_PASSWORD,
            "tls_verify": "never",
        },
    },
    "sasl": {
        "basedn": "dc=example,dc=com",
        "read": {
            "host": "ldap.example.com",
            "method": "ssl",
            "bind": "sasl",
            "sasl_mechanism": "EXTERNAL",
        },
    },
}


def configure_django() -> None:
    """
    Configure Django settings before any model is defined.
    """
    if not settings.configured:
        settings.configure(LDAP_SERVERS=LDAP_SERVERS, USE_I18N=False)
        django.setup()


SCHEMA_ENTRY: dict[str, list[bytes]] = {
    "attributeTypes": [
        s.encode("utf-8")
        for s in (
            "( 2.5.4.0 NAME 'objectClass' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.38 )",
            "( 2.5.4.41 NAME 'name' SYNTAX 1.3.6.1.4.1.1466.115.121.1.15 )",
            "( 2.5.4.3 NAME ( 'cn' 'commonName' ) SUP name )",
            "( 2.5.4.4 NAME ( 'sn' 'surname' ) SUP name )",
            "( 2.5.4.10 NAME ( 'o' 'organizationName' ) SUP name )",
            "( 2.5.4.11 NAME ( 'ou' 'organizationalUnitName' ) SUP name )",
            "( 2.5.4.13 NAME 'description' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.15 )",
            "( 2.5.4.20 NAME 'telephoneNumber' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.50 )",
            "( 2.5.4.35 NAME 'userPassword' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.40 )",
            "( 2.5.4.36 NAME 'userCertificate' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.8 )",
            "( 0.9.2342.19200300.100.1.1 NAME ( 'uid' 'userid' ) "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.15 )",
            "( 0.9.2342.19200300.100.1.3 NAME ( 'mail' 'rfc822Mailbox' ) "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.26 )",
            "( 0.9.2342.19200300.100.1.10 NAME 'manager' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.12 )",
            "( 0.9.2342.19200300.100.1.25 NAME ( 'dc' 'domainComponent' ) "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.26 SINGLE-VALUE )",
            "( 0.9.2342.19200300.100.1.60 NAME 'jpegPhoto' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.28 )",
            "( 2.16.840.1.113730.3.1.241 NAME 'displayName' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.15 SINGLE-VALUE )",
            "( 1.3.6.1.1.1.1.0 NAME 'uidNumber' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.27 SINGLE-VALUE )",
            "( 1.3.6.1.1.1.1.1 NAME 'gidNumber' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.27 SINGLE-VALUE )",
            "( 1.3.6.1.1.1.1.3 NAME 'homeDirectory' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.26 SINGLE-VALUE )",
            "( 1.3.6.1.1.1.1.4 NAME 'loginShell' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.26 SINGLE-VALUE )",
            "( 1.3.6.1.1.1.1.12 NAME 'memberUid' "
            "SYNTAX 1.3.6.1.4.1.1466.115.121.1.26 )",
        )
    ],
    "objectClasses": [
        s.encode("utf-8")
        for s in (
            "( 2.5.6.0 NAME 'top' ABSTRACT MUST objectClass )",
            "( 2.5.6.4 NAME 'organization' SUP top STRUCTURAL MUST o "
            "MAY description )",
            "( 2.5.6.5 NAME 'organizationalUnit' SUP top STRUCTURAL MUST ou "
            "MAY description )",
            "( 2.5.6.8 NAME 'organizationalRole' SUP top STRUCTURAL MUST cn "
            "MAY ( description $ telephoneNumber $ userPassword ) )",
            "( 2.5.6.6 NAME 'person' SUP top STRUCTURAL MUST ( sn $ cn ) "
            "MAY ( userPassword $ telephoneNumber $ description ) )",
            "( 2.5.6.7 NAME 'organizationalPerson' SUP person STRUCTURAL "
            "MAY ou )",
            "( 2.16.840.1.113730.3.2.2 NAME 'inetOrgPerson' "
            "SUP organizationalPerson STRUCTURAL MAY ( displayName $ jpegPhoto "
            "$ mail $ manager $ uid $ userCertificate ) )",
            "( 1.3.6.1.1.1.2.0 NAME 'posixAccount' SUP top AUXILIARY "
            "MUST ( cn $ uid $ uidNumber $ gidNumber $ homeDirectory ) "
            "MAY ( userPassword $ loginShell $ description ) )",
            "( 1.3.6.1.1.1.2.2 NAME 'posixGroup' SUP top STRUCTURAL "
            "MUST ( cn $ gidNumber ) MAY ( userPassword $ memberUid $ "
            "description ) )",
            "( 1.3.6.1.4.1.1466.344 NAME 'dcObject' SUP top AUXILIARY "
            "MUST dc )",
        )
    ],
}


def make_entry(dn: str, **attributes: Any) -> tuple[str, dict[str, list[bytes]]]:
    """
    Build a ``(dn, attributes)`` fixture, encoding ``str`` values and
    wrapping single values in lists.
    """
    data: dict[str, list[bytes]] = {}
    for name, value in attributes.items():
        values = value if isinstance(value, list) else [value]
        data[name] = [v if isinstance(v, bytes) else str(v).encode("utf-8") for v in values]
    return dn, data




#: The URI of the default server; reads and writes both go here
DEFAULT_URI = "ldap://ldap.example.com:389"
SUBSCHEMA_DN = "cn=Subschema"
PHOTO = b"GIF89a\x01\x00\x01\x00"


class DirectoryLDAPObject(FakeLDAPObject):
    """
    A :py:class:`ldap_faker.FakeLDAPObject` that also does SASL binds, the
    ``*_ext_s`` writes and subschema lookups.
    """

    @record_call
    def sasl_interactive_bind_s(
        self,
        who: str,
        auth: Any,
        serverctrls: list | None = None,
        clientctrls: list | None = None,
        sasl_flags: int = ldap.SASL_QUIET,
    ) -> None:
        # No credentials to check: the transport vouches for us
        self.bound_dn = who or "cn=sasl,dc=example,dc=com"

    @needs_bind
    @record_call
    def add_ext_s(
        self, dn: str, modlist: list, serverctrls: list | None = None, clientctrls: list | None = None
    ) -> tuple:
        self.store.create(dn, modlist, bind_dn=self.bound_dn)
        return (ldap.RES_ADD, [], 3, [])

    @needs_bind
    @record_call
    def modify_ext_s(
        self, dn: str, modlist: list, serverctrls: list | None = None, clientctrls: list | None = None
    ) -> tuple:
        self.store.update(dn, modlist, bind_dn=self.bound_dn)
        return (ldap.RES_MODIFY, [], 3, [])

    @needs_bind
    @record_call
    def delete_ext_s(
        self, dn: str, serverctrls: list | None = None, clientctrls: list | None = None
    ) -> tuple:
        self.store.delete(dn, bind_dn=self.bound_dn)
        return (ldap.RES_DELETE, [], 3, [])

    @record_call
    def search_subschemasubentry_s(self, dn: str | None = None) -> str | None:
        if self.store.exists(SUBSCHEMA_DN):
            return SUBSCHEMA_DN
        return None

    @record_call
    def read_subschemasubentry_s(
        self, subschemasubentry_dn: str, attrs: list[str] | None = None
    ) -> dict[str, list[bytes]] | None:
        results = self._search_s(subschemasubentry_dn, ldap.SCOPE_BASE, attrlist=attrs)
        return results[0][1] if results else None


class DirectoryFakeLDAP(FakeLDAP):
    """
    Hand out :py:class:`DirectoryLDAPObject` connections from
    :py:func:`ldap.initialize`.
    """

    @record_call
    def initialize(
        self,
        uri: str,
        trace_level: int = 0,
        trace_file: Any = None,
        trace_stack_limit: int | None = None,
        fileno: Any = None,
    ) -> DirectoryLDAPObject:
        if uri not in self.stores:
            self.stores[uri] = self.server_factory.get(uri)
        conn = DirectoryLDAPObject(uri, store=self.stores[uri])
        self.connections.append(conn)
        return conn


class FakeLDAPMixin(LDAPFakerMixin):
    """
    Run each test against a fresh copy of ``directory.json`` plus our
    subschema subentry.

    Every connection to the same URI shares one copy, so what a write session
    saves the next read session sees.  The schema cache on
    :py:class:`~ldapmapper.managers.LdapManager` is emptied around each test.
    """

    ldap_modules = ["ldapmapper"]
    ldap_fixtures = "directory.json"

    @classmethod
    def load_servers(cls, server_factory: LDAPServerFactory) -> None:
        super().load_servers(server_factory)
        server_factory.default.register_object(
            make_entry(
                SUBSCHEMA_DN,
                objectclass=["top", "subentry", "subschema"],
                cn="Subschema",
                **SCHEMA_ENTRY,
            )
        )

    def setUp(self) -> None:
        self.fake_ldap = DirectoryFakeLDAP(self.server_factory)
        self.patches = []
        for mod in self.ldap_modules:
            for name in ("initialize", "set_option", "get_option"):
                patcher = patch(f"{mod}.ldap.{name}", getattr(self.fake_ldap, name))
                patcher.start()
                self.patches.append(patcher)
        LdapManager._schema_cache.clear()
        self.addCleanup(LdapManager._schema_cache.clear)

    def directory(self, uri: str = DEFAULT_URI) -> ObjectStore:
        """
        Return the :py:class:`ldap_faker.ObjectStore` that connections to
        ``uri`` use in this test.
        """
        if uri not in self.fake_ldap.stores:
            self.fake_ldap.stores[uri] = self.server_factory.get(uri)
        return self.fake_ldap.stores[uri]

    def entry(self, dn: str, uri: str = DEFAULT_URI) -> dict[str, list[bytes]] | None:
        """
        Return the attributes stored for ``dn``, with lower cased names, or
        ``None`` if there is no such entry.
        """
        store = self.directory(uri)
        if not store.exists(dn):
            return None
        return {name.lower(): values for name, values in store.get(dn).items()}

    def calls_to(self, *names: str) -> list[dict[str, Any]]:
        """
        Return the arguments of every call to the ``LDAPObject`` methods named
        in ``names``, connection by connection, in the order they were made.
        """
        return [
            record.args
            for record in self.fake_ldap.connection_calls().calls
            if record.api_name in names
        ]
