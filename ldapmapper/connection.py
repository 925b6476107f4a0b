"""
LDAP connection adapter.

This module wraps a python-ldap :py:class:`~ldap.ldapobject.LDAPObject` in an
:py:class:`LdapSession` that knows how to reach the server (plain, SSL or
StartTLS transports), how to bind (anonymously, with a simple bind or with
SASL), and how to run searches and writes while translating python-ldap
exceptions into the :py:mod:`ldapmapper.exceptions` hierarchy.

A session is configured with one connection dict from
``settings.LDAP_SERVERS``:

.. code-block:: python

    LDAP_SERVERS = {
        "default": {
            "basedn": "dc=example,dc=com",
            "read": {
                "host": "ldap.example.com",
                "port": 389,
                "method": "tls",
                "bind": "simple",
                "user": "cn=admin,dc=example,dc=com",
                "password": "secret",
            },
            "write": {...},
        }
    }
"""

import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, ClassVar

import ldapurl

from ldapmapper import ldap

from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConnectionError,  # noqa: A004
    EntryAlreadyExist,
    EntryNotFound,
    LdapMapperError,
    ObjectClassViolation,
    OperationError,
    OperationNotPermitted,
    StrongAuthenticationRequired,
)
from .filters import compile_filter
from .schema import SchemaRegistry, strip_options
from .typing import AddModlist, EntryOperations, LDAPData, ModifyModlist

logger = logging.getLogger("django-ldapmapper")

#: Scope names accepted by :py:meth:`LdapSession.search`
SCOPES: dict[str, int] = {
    "base": ldap.SCOPE_BASE,  # type: ignore[attr-defined]
    "one": ldap.SCOPE_ONELEVEL,  # type: ignore[attr-defined]
    "sub": ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
}

#: Bind modes accepted in the ``bind`` configuration key
BIND_MODES = ("anonymous", "simple", "sasl")

#: SASL mechanisms that need a user name and password; the others (e.g.
#: EXTERNAL, GSSAPI) get their credentials from the transport or environment
SASL_CREDENTIAL_MECHANISMS = ("DIGEST-MD5", "CRAM-MD5", "PLAIN")

#: Entry operations accepted by :py:meth:`LdapSession.add` and
#: :py:meth:`LdapSession.modify`
MODIFY_OPERATIONS: dict[str, int] = {
    "add": ldap.MOD_ADD,  # type: ignore[attr-defined]
    "delete": ldap.MOD_DELETE,  # type: ignore[attr-defined]
    "replace": ldap.MOD_REPLACE,  # type: ignore[attr-defined]
}

#: Legacy servers report an empty search this way instead of NO_SUCH_OBJECT
NO_RESULT_MESSAGE = "no result returned by search"

#: LDAP result codes we translate into specific exceptions
RESULT_CODE_ERRORS: dict[int, type[OperationError]] = {
    8: StrongAuthenticationRequired,  # strongerAuthRequired
    32: EntryNotFound,  # noSuchObject
    50: OperationNotPermitted,  # insufficientAccessRights
    53: OperationNotPermitted,  # unwillingToPerform
    65: ObjectClassViolation,  # objectClassViolation
    68: EntryAlreadyExist,  # entryAlreadyExists
}
INVALID_CREDENTIALS = 49
SERVER_DOWN = -1
CONNECT_ERROR = -11

#: Result codes for python-ldap exceptions raised without a ``result`` key
ERROR_CLASS_CODES: dict[type, int] = {
    ldap.STRONG_AUTH_REQUIRED: 8,  # type: ignore[attr-defined]
    ldap.NO_SUCH_OBJECT: 32,  # type: ignore[attr-defined]
    ldap.INVALID_CREDENTIALS: INVALID_CREDENTIALS,  # type: ignore[attr-defined]
    ldap.INSUFFICIENT_ACCESS: 50,  # type: ignore[attr-defined]
    ldap.UNWILLING_TO_PERFORM: 53,  # type: ignore[attr-defined]
    ldap.OBJECT_CLASS_VIOLATION: 65,  # type: ignore[attr-defined]
    ldap.NOT_ALLOWED_ON_NONLEAF: 66,  # type: ignore[attr-defined]
    ldap.ALREADY_EXISTS: 68,  # type: ignore[attr-defined]
}


def error_details(error: Exception) -> tuple[int | None, str]:
    """
    Pull the result code and the server's diagnostic message out of a
    python-ldap exception.

    python-ldap puts a dict with ``result``, ``desc`` and ``info`` keys in
    ``error.args[0]``; a bare :py:class:`ldap.LDAPError` raised by other code
    may carry just a message, or a dict with no ``result``, in which case the
    result code comes from the exception class.

    Args:
        error: the python-ldap exception

    Returns:
        A ``(result_code, message)`` tuple.

    """
    info: dict[str, Any] = {}
    if error.args and isinstance(error.args[0], dict):
        info = error.args[0]
    code = info.get("result", getattr(error, "errnum", None))
    if code is None:
        code = ERROR_CLASS_CODES.get(type(error))
    parts = [str(p) for p in (info.get("desc"), info.get("info")) if p]
    message = ": ".join(parts) if parts else str(error)
    return code, message


def translate_ldap_error(error: Exception, operation: str) -> LdapMapperError:
    """
    Convert a python-ldap exception raised during ``operation`` into the
    matching :py:mod:`ldapmapper.exceptions` class.

    Args:
        error: the python-ldap exception
        operation: the name of the operation that failed, e.g. ``"add"``

    Returns:
        The exception to raise in its place.

    """
    code, message = error_details(error)
    if isinstance(error, (ldap.SERVER_DOWN, ldap.CONNECT_ERROR)) or code in (  # type: ignore[attr-defined]
        SERVER_DOWN,
        CONNECT_ERROR,
    ):
        return ConnectionError(f"{operation}: can't contact LDAP server: {message}")
    if isinstance(error, ldap.INVALID_CREDENTIALS) or code == INVALID_CREDENTIALS:  # type: ignore[attr-defined]
        return AuthenticationError(f"{operation}: invalid credentials: {message}")
    error_class = RESULT_CODE_ERRORS.get(code, OperationError)  # type: ignore[arg-type]
    return error_class(
        f"{operation} failed: {message}",
        operation=operation,
        result_code=code,
        server_message=message,
    )


def resolve_scope(scope: str | int) -> int:
    """
    Return the python-ldap constant for ``scope``.

    Raises:
        ConfigurationError: ``scope`` is not ``base``, ``one`` or ``sub``, or
            one of the matching python-ldap constants.

    """
    if isinstance(scope, int) and scope in SCOPES.values():
        return scope
    if isinstance(scope, str) and scope.lower() in SCOPES:
        return SCOPES[scope.lower()]
    msg = f"{scope!r} is not a valid search scope; choose one of: {', '.join(SCOPES)}"
    raise ConfigurationError(msg)


# -----------------------
# Transports
# -----------------------


class BindMethod:
    """
    How we reach the server: the URL scheme to use, and whether we need to
    upgrade the connection with StartTLS once it is open.
    """

    #: The name used in the ``method`` configuration key
    name: ClassVar[str] = "plain"
    scheme: ClassVar[str] = "ldap"
    default_port: ClassVar[int] = 389
    ssl: ClassVar[bool] = False
    start_tls: ClassVar[bool] = False

    def uri(self, host: str, port: int | None = None) -> str:
        return f"{self.scheme}://{host}:{port or self.default_port}"

    def connect(
        self,
        host: str,
        port: int | None = None,
        configure: Callable[[Any], None] | None = None,
    ) -> "ldap.ldapobject.LDAPObject":  # type: ignore[name-defined]
        """
        Open a connection to ``host``.

        Args:
            host: the server host name
            port: the server port; the method's default if not given
            configure: called with the new LDAPObject to set options on it
                before any traffic is exchanged

        Returns:
            The new LDAPObject.

        """
        connection = ldap.initialize(self.uri(host, port))  # type: ignore[attr-defined]
        if configure:
            configure(connection)
        if self.start_tls:
            connection.start_tls_s()
        return connection

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class PlainMethod(BindMethod):
    """Unencrypted LDAP."""


class SSLMethod(BindMethod):
    """LDAP over SSL (``ldaps://``)."""

    name = "ssl"
    scheme = "ldaps"
    default_port = 636
    ssl = True


class TLSMethod(BindMethod):
    """Plain LDAP, upgraded with StartTLS before we bind."""

    name = "tls"
    start_tls = True


#: Available transports, by configuration name
METHODS: dict[str, type[BindMethod]] = {
    method.name: method for method in (PlainMethod, SSLMethod, TLSMethod)
}


def ensure_method(name: str | None) -> BindMethod:
    """
    Return the transport named ``name``; ``None`` means ``plain``.

    Raises:
        ConfigurationError: there is no such transport.

    """
    key = (name or "plain").lower()
    try:
        return METHODS[key]()
    except KeyError as e:
        msg = (
            f"{name!r} is not one of the available connect methods: "
            f"{', '.join(METHODS)}"
        )
        raise ConfigurationError(msg) from e


def parse_url(config: Mapping[str, Any]) -> tuple[str, int, str]:
    """
    Derive ``(host, port, method)`` from a legacy ``url`` configuration key,
    e.g. ``ldaps://ldap.example.com:636``.  ``use_starttls`` (default
    ``True``) picks StartTLS for ``ldap://`` URLs.
    """
    url = ldapurl.LDAPUrl(config["url"])
    host, _, port = url.hostport.partition(":")
    if url.urlscheme == "ldaps":
        method = "ssl"
    elif config.get("use_starttls", True):
        method = "tls"
    else:
        method = "plain"
    return host, int(port) if port else METHODS[method].default_port, method


# -----------------------
# Sessions
# -----------------------


class LdapSession:
    """
    One connection to an LDAP server, plus the bind we make on it.

    The transport is chosen once, here, from ``config["method"]``.  Nothing
    touches the network until :py:meth:`connect` or :py:meth:`bind` is
    called; :py:class:`~ldapmapper.managers.LdapManager` does that lazily, one
    session per thread.  Sessions must not be shared across threads.

    Args:
        config: one connection dict from ``settings.LDAP_SERVERS``

    Keyword Args:
        bind_dn: bind as this DN instead of the configured ``user``; this
            forces a simple bind
        password: the password for ``bind_dn``
        schema: a schema registry to use instead of loading one from the
            server

    Raises:
        ConfigurationError: the configuration names an unknown transport or
            bind mode

    """

    def __init__(
        self,
        config: Mapping[str, Any],
        bind_dn: str | None = None,
        password: str | None = None,
        schema: SchemaRegistry | None = None,
    ) -> None:
        self.config = config
        if config.get("url") and not config.get("host"):
            self.host, self.port, method = parse_url(config)
        else:
            self.host = config.get("host", "localhost")
            self.port = config.get("port")
            method = config.get("method", "plain")
        self.method: BindMethod = ensure_method(method)
        self.port = int(self.port or self.method.default_port)
        #: The identifier we use for this server in every log message
        self.uri: str = self.method.uri(self.host, self.port)
        if bind_dn:
            self.bind_dn: str | None = bind_dn
            self.password: str | None = password
            self.bind_mode = "simple"
        else:
            self.bind_dn = config.get("user")
            self.password = config.get("password")
            self.bind_mode = config.get("bind") or (
                "simple" if self.bind_dn else "anonymous"
            )
        self.bind_mode = self.bind_mode.lower()
        if self.bind_mode not in BIND_MODES:
            msg = (
                f"{self.bind_mode!r} is not one of the available bind modes: "
                f"{', '.join(BIND_MODES)}"
            )
            raise ConfigurationError(msg)
        self.connection: Any = None
        self.bound: bool = False
        self._schema = schema

    def __repr__(self) -> str:
        return f"<LdapSession: {self.uri} bind={self.bind_mode} bound={self.bound}>"

    def __enter__(self) -> "LdapSession":
        self.bind()
        return self

    def __exit__(self, *exc_info) -> None:
        self.unbind()

    # ------------------------
    # Connection management
    # ------------------------

    def _set_options(self, connection: Any) -> None:  # noqa: PLR0912
        """
        Apply the python-ldap options from our configuration to a new
        connection.

        Raises:
            ValueError: If the ``tls_verify`` value in the configuration is
                invalid.
            OSError: If a configured certificate or key file does not exist or
                is not a file.

        """
        config = self.config
        connection.set_option(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3)  # type: ignore[attr-defined]
        if config.get("follow_referrals", False):
            connection.set_option(ldap.OPT_REFERRALS, 1)  # type: ignore[attr-defined]
        else:
            connection.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
        timeout = config.get("timeout", 15.0)
        connection.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))  # type: ignore[attr-defined]
        sizelimit = config.get("sizelimit", None)
        if sizelimit:
            connection.set_option(ldap.OPT_SIZELIMIT, int(sizelimit))  # type: ignore[attr-defined]
        if not (self.method.ssl or self.method.start_tls):
            return
        tls_verify = config.get("tls_verify", "never")
        if tls_verify == "never":
            connection.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
        elif tls_verify == "always":
            connection.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
        else:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ValueError(msg)
        for key, option, label in (
            ("tls_ca_certfile", ldap.OPT_X_TLS_CACERTFILE, "CA Certificate"),  # type: ignore[attr-defined]
            ("tls_certfile", ldap.OPT_X_TLS_CERTFILE, "TLS Certificate"),  # type: ignore[attr-defined]
            ("tls_keyfile", ldap.OPT_X_TLS_KEYFILE, "TLS Key"),  # type: ignore[attr-defined]
        ):
            if filename := config.get(key, None):
                path = Path(filename)
                if not path.exists():
                    msg = f"{label} file does not exist: {filename}"
                    raise OSError(msg)
                if not path.is_file():
                    msg = f"{label} file is not a file: {filename}"
                    raise OSError(msg)
                connection.set_option(option, filename)
        # This must come last, after all the other TLS options are set
        connection.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]

    def connect(self) -> None:
        """
        Open the transport, if it isn't open already.

        Raises:
            ConnectionError: we could not reach the server, or StartTLS
                failed.

        """
        if self.connection is not None:
            return
        start = time.monotonic()
        try:
            self.connection = self.method.connect(
                self.host, self.port, configure=self._set_options
            )
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            _, message = error_details(e)
            logger.error(
                "ldapmapper.session.connect.failed uri=%s error=%s", self.uri, message
            )
            msg = f"Unable to connect to {self.uri}: {message}"
            raise ConnectionError(msg) from e
        logger.debug(
            "ldapmapper.session.connect uri=%s start_tls=%s elapsed=%.3fs",
            self.uri,
            self.method.start_tls,
            time.monotonic() - start,
        )

    def bind(self) -> None:
        """
        Connect if needed, then bind using the configured bind mode.

        Raises:
            ConnectionError: we could not reach the server
            AuthenticationError: the server rejected our credentials
            StrongAuthenticationRequired: the server wants a stronger bind

        """
        self.connect()
        if self.bind_mode == "anonymous":
            self._call("bind", self.connection.simple_bind_s)
        elif self.bind_mode == "simple":
            self._call(
                "bind", self.connection.simple_bind_s, self.bind_dn, self.password
            )
        else:
            mechanism = self.config.get("sasl_mechanism", "EXTERNAL").upper()
            credentials: dict[int, str] = {}
            if mechanism in SASL_CREDENTIAL_MECHANISMS:
                credentials[ldap.sasl.CB_AUTHNAME] = self.bind_dn or ""  # type: ignore[attr-defined]
                credentials[ldap.sasl.CB_PASS] = self.password or ""  # type: ignore[attr-defined]
            if authzid := self.config.get("sasl_authzid"):
                credentials[ldap.sasl.CB_USER] = authzid  # type: ignore[attr-defined]
            self._call(
                "bind",
                self.connection.sasl_interactive_bind_s,
                "",
                ldap.sasl.sasl(credentials, mechanism),  # type: ignore[attr-defined]
            )
        self.bound = True
        logger.info(
            "ldapmapper.session.bind uri=%s mode=%s dn=%s",
            self.uri,
            self.bind_mode,
            self.bind_dn if self.bind_mode != "anonymous" else "",
        )

    def unbind(self) -> None:
        """
        Unbind and close the transport.  Does nothing if we never connected.
        """
        if self.connection is None:
            return
        try:
            self.connection.unbind_s()
        finally:
            self.connection = None
            self.bound = False
        logger.debug("ldapmapper.session.unbind uri=%s", self.uri)

    def _ensure_bound(self) -> None:
        if not self.bound:
            self.bind()

    def _call(self, operation: str, func: Callable, *args, **kwargs) -> Any:
        """
        Run a python-ldap call, logging how long it took and translating any
        python-ldap exception it raises.
        """
        start = time.monotonic()
        try:
            return func(*args, **kwargs)
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            error = translate_ldap_error(e, operation)
            logger.warning(
                "ldapmapper.session.%s.failed uri=%s error=%s",
                operation,
                self.uri,
                error,
            )
            raise error from e
        finally:
            logger.debug(
                "ldapmapper.session.%s uri=%s elapsed=%.3fs",
                operation,
                self.uri,
                time.monotonic() - start,
            )

    # ------------------------
    # Schema
    # ------------------------

    def load_schema(self) -> SchemaRegistry:
        """
        Read the server's subschema subentry and build a
        :py:class:`~ldapmapper.schema.SchemaRegistry` from it.

        A server that does not publish a subschema subentry gets an empty
        registry.

        Returns:
            A new schema registry.

        """
        self._ensure_bound()
        dn = self._call("schema", self.connection.search_subschemasubentry_s)
        if not dn:
            logger.warning("ldapmapper.session.schema.not-found uri=%s", self.uri)
            return SchemaRegistry()
        entry = self._call(
            "schema",
            self.connection.read_subschemasubentry_s,
            dn,
            attrs=["objectClasses", "attributeTypes"],
        )
        return SchemaRegistry.from_entry(entry or {})

    @property
    def schema(self) -> SchemaRegistry:
        """
        The server's schema, loaded from the server on first use.
        """
        if self._schema is None:
            self._schema = self.load_schema()
        return self._schema

    @schema.setter
    def schema(self, value: SchemaRegistry) -> None:
        self._schema = value

    # ------------------------
    # Reads
    # ------------------------

    def search(  # noqa: PLR0913
        self,
        base: str,
        scope: str | int = "sub",
        filter: Any = None,  # noqa: A002
        attributes: list[str] | None = None,
        limit: int | None = None,
        callback: Callable[[str, dict[str, list[bytes]]], Any] | None = None,
        controls: list[Any] | None = None,
    ) -> list[Any]:
        """
        Search the directory.

        Entries are read from the server one at a time.  After ``limit``
        entries we stop reading; the rest of the server's answer is discarded.

        Args:
            base: the DN to search from

        Keyword Args:
            scope: ``base``, ``one`` or ``sub``
            filter: anything :py:func:`~ldapmapper.filters.compile_filter`
                accepts; no filter means ``(objectClass=*)``
            attributes: the attributes to retrieve; all user attributes if
                not given
            limit: stop after this many entries; no limit if ``None`` or 0
            callback: called as ``callback(dn, attributes)`` for each entry;
                its return values are collected instead of the entries
            controls: server controls to send with the search

        Raises:
            ConfigurationError: ``scope`` is not valid
            ConnectionError: the server went away

        Returns:
            A list of ``(dn, attributes)`` tuples, or of callback results.
            An empty list if ``base`` does not exist.

        """
        filterstr = compile_filter(filter) or "(objectClass=*)"
        ldap_scope = resolve_scope(scope)
        attrlist = list(attributes) if attributes else None
        self._ensure_bound()
        results: list[Any] = []
        start = time.monotonic()
        try:
            msgid = self.connection.search_ext(
                base, ldap_scope, filterstr, attrlist, serverctrls=controls
            )
            done = False
            while not done:
                rtype, rdata, _, _ = self.connection.result3(msgid, all=0)
                for dn, attrs in rdata or []:
                    # Skip search continuation references
                    if dn is None or not isinstance(attrs, dict):
                        continue
                    results.append(callback(dn, attrs) if callback else (dn, attrs))
                    if limit and len(results) >= limit:
                        done = True
                        break
                if rtype == ldap.RES_SEARCH_RESULT:  # type: ignore[attr-defined]
                    done = True
        except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
            logger.debug(
                "ldapmapper.session.search.no-such-object uri=%s base=%s",
                self.uri,
                base,
            )
            return []
        except (ldap.SERVER_DOWN, ldap.CONNECT_ERROR) as e:  # type: ignore[attr-defined]
            raise translate_ldap_error(e, "search") from e
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            _, message = error_details(e)
            if NO_RESULT_MESSAGE in message.lower():
                logger.debug(
                    "ldapmapper.session.search.no-result uri=%s base=%s",
                    self.uri,
                    base,
                )
                return []
            raise
        logger.debug(
            "ldapmapper.session.search uri=%s base=%s scope=%s filter=%s "
            "attributes=%s entries=%d elapsed=%.3fs",
            self.uri,
            base,
            scope,
            filterstr,
            attrlist,
            len(results),
            time.monotonic() - start,
        )
        return results

    # ------------------------
    # Writes
    # ------------------------

    def _binary(self, attribute: str, values: list[Any]) -> bool:
        if self._schema is not None and self._schema.is_binary(attribute):
            return True
        for value in values:
            if isinstance(value, bytes):
                try:
                    value.decode("utf-8")
                except UnicodeDecodeError:
                    return True
        return False

    def _attribute_name(self, attribute: str) -> str:
        if (
            self._schema is not None
            and ";binary" not in attribute.lower()
            and self._schema.is_binary_required(attribute)
        ):
            return f"{attribute};binary"
        return attribute

    @staticmethod
    def _encode(values: Any) -> list[bytes]:
        if values is None:
            return []
        if not isinstance(values, (list, tuple, set, frozenset)):
            values = [values]
        encoded = []
        for value in values:
            if isinstance(value, bytes):
                encoded.append(value)
            elif isinstance(value, bytearray):
                encoded.append(bytes(value))
            elif isinstance(value, bool):
                encoded.append(b"TRUE" if value else b"FALSE")
            else:
                encoded.append(str(value).encode("utf-8"))
        return encoded

    def _normalize(
        self, entries: EntryOperations | Mapping[str, Any], default: str
    ) -> list[tuple[str, str, list[bytes]]]:
        if isinstance(entries, Mapping):
            entries = [(default, key, value) for key, value in entries.items()]
        normalized = []
        for operation, attribute, values in entries:
            if operation not in MODIFY_OPERATIONS:
                msg = (
                    f"Unknown entry operation {operation!r} for attribute "
                    f"{attribute}; choose one of: {', '.join(MODIFY_OPERATIONS)}"
                )
                raise ValueError(msg)
            normalized.append(
                (operation, self._attribute_name(attribute), self._encode(values))
            )
        return normalized

    def _loggable(self, entries: list[tuple[str, str, list[bytes]]]) -> list[Any]:
        loggable = []
        for operation, attribute, values in entries:
            if self._binary(strip_options(attribute), values):
                shown: list[Any] = [f"<{len(v)} bytes>" for v in values]
            else:
                shown = [v.decode("utf-8") for v in values]
            loggable.append((operation, attribute, shown))
        return loggable

    def add(
        self,
        dn: str,
        entries: EntryOperations | Mapping[str, Any],
        controls: list[Any] | None = None,
    ) -> None:
        """
        Add a new entry.

        Args:
            dn: the DN of the new entry
            entries: ``(operation, attribute, values)`` triples, or a mapping
                of attribute to values

        Keyword Args:
            controls: server controls to send with the request

        Raises:
            EntryAlreadyExist: ``dn`` is already taken
            OperationError: the server refused the entry

        """
        normalized = self._normalize(entries, "add")
        modlist: AddModlist = [
            (attribute, values) for _, attribute, values in normalized if values
        ]
        self._ensure_bound()
        logger.debug(
            "ldapmapper.session.add uri=%s dn=%s entries=%s",
            self.uri,
            dn,
            self._loggable(normalized),
        )
        if controls:
            self._call("add", self.connection.add_ext_s, dn, modlist, serverctrls=controls)
        else:
            self._call("add", self.connection.add_s, dn, modlist)

    def modify(
        self,
        dn: str,
        entries: EntryOperations | Mapping[str, Any],
        controls: list[Any] | None = None,
    ) -> None:
        """
        Change the attributes of an existing entry.

        Args:
            dn: the DN of the entry
            entries: ``(operation, attribute, values)`` triples, with
                operation one of ``add``, ``delete`` or ``replace``; or a
                mapping of attribute to replacement values

        Keyword Args:
            controls: server controls to send with the request

        Raises:
            EntryNotFound: ``dn`` does not exist
            OperationError: the server refused the change

        """
        normalized = self._normalize(entries, "replace")
        modlist: ModifyModlist = [
            (
                MODIFY_OPERATIONS[operation],
                attribute,
                values if values or operation != "delete" else None,
            )
            for operation, attribute, values in normalized
        ]
        self._ensure_bound()
        logger.debug(
            "ldapmapper.session.modify uri=%s dn=%s entries=%s",
            self.uri,
            dn,
            self._loggable(normalized),
        )
        if controls:
            self._call(
                "modify", self.connection.modify_ext_s, dn, modlist, serverctrls=controls
            )
        else:
            self._call("modify", self.connection.modify_s, dn, modlist)

    def delete(self, dn: str, controls: list[Any] | None = None) -> None:
        """
        Delete the entry at ``dn``.

        Raises:
            EntryNotFound: ``dn`` does not exist

        """
        self._ensure_bound()
        logger.debug("ldapmapper.session.delete uri=%s dn=%s", self.uri, dn)
        if controls:
            self._call("delete", self.connection.delete_ext_s, dn, serverctrls=controls)
        else:
            self._call("delete", self.connection.delete_s, dn)

    def modify_rdn(  # noqa: PLR0913
        self,
        dn: str,
        new_rdn: str,
        delete_old_rdn: bool = True,
        new_superior: str | None = None,
        controls: list[Any] | None = None,
    ) -> None:
        """
        Rename the entry at ``dn``, optionally moving it under
        ``new_superior``.

        Args:
            dn: the current DN
            new_rdn: the new RDN, e.g. ``uid=bob``

        Keyword Args:
            delete_old_rdn: remove the old RDN value from the entry
            new_superior: move the entry under this DN
            controls: server controls to send with the request

        Raises:
            EntryNotFound: ``dn`` does not exist
            EntryAlreadyExist: the new DN is already taken

        """
        self._ensure_bound()
        logger.debug(
            "ldapmapper.session.modify_rdn uri=%s dn=%s new_rdn=%s new_superior=%s",
            self.uri,
            dn,
            new_rdn,
            new_superior,
        )
        if controls or new_superior:
            self._call(
                "modify_rdn",
                self.connection.rename_s,
                dn,
                new_rdn,
                new_superior,
                int(delete_old_rdn),
                serverctrls=controls,
            )
        else:
            self._call(
                "modify_rdn", self.connection.modrdn_s, dn, new_rdn, int(delete_old_rdn)
            )

    def get_entry(self, dn: str, attributes: list[str] | None = None) -> LDAPData | None:
        """
        Read the entry at ``dn``, or return ``None`` if it does not exist.
        """
        results = self.search(dn, scope="base", attributes=attributes, limit=1)
        return results[0] if results else None
