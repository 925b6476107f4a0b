# mypy: disable-error-code="attr-defined"
"""
LDAP mapper manager.

This module provides :py:class:`LdapManager`, the ``Model.objects`` entry
point for finding, adding, changing and removing entries, plus the
:py:func:`atomic` decorator that gives each thread its own
:py:class:`~ldapmapper.connection.LdapSession` for the duration of an
operation, and :py:class:`Modlist`, which turns model instances into the
``(operation, attribute, values)`` triples the session writes.
"""

import logging
import threading
from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any, ClassVar, cast

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from ldapmapper import ldap

from .connection import LdapSession
from .controls import ServerSideSortControl
from .exceptions import AuthenticationError, EntryNotFound
from .schema import SchemaRegistry
from .typing import EntryOperations, LDAPData

if TYPE_CHECKING:
    from .models import Model
    from .options import Options

logger = logging.getLogger("django-ldapmapper")


# -----------------------
# Decorators
# -----------------------


def atomic(key: str = "read") -> Callable:
    """
    Decorator to wrap methods that need to talk to an LDAP server.

    If the current thread already has a session open we reuse it; otherwise
    we open and bind one for the call and unbind it afterwards.

    Args:
        key: Either "read" or "write". Determines which LDAP server to use.

    Returns:
        A decorator that manages LDAP session context for the wrapped method.

    """

    def real_decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Any:
            if self.has_session():
                return func(self, *args, **kwargs)
            self.connect(key)
            try:
                return func(self, *args, **kwargs)
            finally:
                # Clean up the session no matter what happens in func()
                self.disconnect()

        return wrapper

    return real_decorator


# -----------------------
# Helper Classes
# -----------------------


class Modlist:
    """
    Build the entry operations for adding or updating a model instance.

    Args:
        manager: The LdapManager instance this modlist is associated with.

    """

    def __init__(self, manager: "LdapManager") -> None:
        self.manager = manager

    @property
    def options(self) -> "Options":
        return cast("Options", cast("type[Model]", self.manager.model)._meta)

    def add(self, obj: "Model") -> EntryOperations:
        """
        Return the ``add`` operations for a new entry: every editable
        attribute with a value, plus ``objectclass``.

        Raises:
            ImproperlyConfigured: If the object has no objectclasses.

        """
        _, data = obj.to_db()
        if not data.get("objectclass"):
            msg = "Tried to add an object with no objectclasses defined."
            raise ImproperlyConfigured(msg)
        entries: EntryOperations = []
        for attribute, values in data.items():
            field = cast("Any", self.options.field_for_attribute(attribute))
            if not field.editable or not values:
                continue
            entries.append(("add", attribute, values))
        return entries

    def update(
        self, new: "Model", original: dict[str, list[bytes]]
    ) -> EntryOperations:
        """
        Return the operations that turn ``original`` (the attributes as we
        loaded them) into the current state of ``new``.  Attributes that were
        emptied are deleted, changed ones replaced.  The primary key attribute
        is left alone; renames happen separately.

        Args:
            new: The model instance with updated data.
            original: The attributes as loaded from LDAP.

        Returns:
            A list of ``(operation, attribute, values)`` triples.

        """
        before = {k.lower(): v for k, v in original.items()}
        pk_attribute = cast("Any", self.options.pk).ldap_attribute.lower()
        _, data = new.to_db()
        entries: EntryOperations = []
        for attribute, values in data.items():
            field = cast("Any", self.options.field_for_attribute(attribute))
            if not field.editable or attribute.lower() == pk_attribute:
                continue
            old_values = before.get(attribute.lower(), [])
            if values == old_values:
                continue
            if not values:
                entries.append(("delete", attribute, []))
            else:
                entries.append(("replace", attribute, values))
        return entries


def sort_instances(objects: list["Model"], order_by: list[str]) -> list["Model"]:
    """
    Sort model instances by the field names in ``order_by``; a leading ``-``
    sorts that field descending.  ``None`` sorts before any other value.
    """

    def sort_key(obj: "Model", name: str) -> tuple[int, Any]:
        value = getattr(obj, name)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, str):
            value = value.lower()
        return (0, None) if value is None else (1, value)

    # Stable sorts, applied from the least significant key up
    for key in reversed(order_by):
        name = key.lstrip("-")
        objects = sorted(
            objects,
            key=lambda obj, name=name: sort_key(obj, name),
            reverse=key.startswith("-"),
        )
    return objects


# -----------------------
# The manager
# -----------------------


class LdapManager:
    """
    Manager class for direct interactions with LDAP servers.

    This class handles connecting to the LDAP server, searching, adding,
    modifying and deleting entries, and authenticating users.  Searches only
    ever see entries carrying every object class the model requires.

    This class is thread-safe -- it will use a different LDAP session for
    each thread, because LDAP connections are not thread-safe.

    """

    #: Schema registries, by ``settings.LDAP_SERVERS`` key
    _schema_cache: ClassVar[dict[str, SchemaRegistry]] = {}
    _schema_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self.logger = logger
        # These get set during contribute_to_class()
        # self.config is the part of settings.LDAP_SERVERS that we need for our Model
        self.config: dict[str, Any] | None = None
        self.model: type[Model] | None = None
        self.pk: str | None = None
        self.basedn: str | None = None
        self.scope: str = "sub"
        self.ldap_server: str = "default"
        self.ldap_options: list[str] = []
        # keys in this dictionary get manipulated by .connect() and .disconnect()
        self._sessions: dict[threading.Thread, LdapSession] = {}

    def contribute_to_class(self, cls, accessor_name) -> None:
        """
        Set up the manager for a model class, configuring attributes from
        model meta.

        Raises:
            ImproperlyConfigured: ``settings.LDAP_SERVERS`` is missing, has no
                entry for the model's server, or no basedn can be found.

        """
        options = cls._meta
        self.pk = options.pk.name
        self.basedn = options.basedn
        self.scope = options.scope
        self.ldap_server = options.ldap_server
        self.ldap_options = options.ldap_options
        try:
            self.config = settings.LDAP_SERVERS[options.ldap_server]
        except AttributeError as e:
            msg = "settings.LDAP_SERVERS does not exist!"
            raise ImproperlyConfigured(msg) from e
        except KeyError as e:
            msg = (
                f"{cls.__name__}: settings.LDAP_SERVERS has no key "
                f"'{options.ldap_server}'"
            )
            raise ImproperlyConfigured(msg) from e

        if not self.basedn:
            try:
                self.basedn = self.config["basedn"]  # type: ignore[index]
            except KeyError as e:
                msg = (
                    f"{cls.__name__}: no Meta.basedn and settings.LDAP_SERVERS"
                    f"['{options.ldap_server}'] has no 'basedn' key"
                )
                raise ImproperlyConfigured(msg) from e
            options.basedn = self.basedn
        self.model = cls
        options.base_manager = self
        setattr(cls, accessor_name, self)

    @property
    def options(self) -> "Options":
        return cast("Options", cast("type[Model]", self.model)._meta)

    # ------------------------
    # Sessions
    # ------------------------

    def _session_config(self, key: str) -> dict[str, Any]:
        config = cast("dict[str, Any]", self.config)
        if key in config:
            return config[key]
        if key == "write" and "read" in config:
            return config["read"]
        msg = f"settings.LDAP_SERVERS['{self.ldap_server}'] has no '{key}' key"
        raise ImproperlyConfigured(msg)

    def new_session(
        self, key: str = "read", dn: str | None = None, password: str | None = None
    ) -> LdapSession:
        """
        Return a new, unbound session to the ``key`` server.

        Args:
            key: Configuration key for the LDAP server.
            dn: Optional bind DN.
            password: Optional password.

        """
        return LdapSession(
            self._session_config(key),
            bind_dn=dn,
            password=password,
            schema=self._schema_cache.get(self.ldap_server),
        )

    def connect(
        self, key: str, dn: str | None = None, password: str | None = None
    ) -> None:
        """
        Open and bind the per-thread session. Used by the @atomic decorator.
        """
        session = self.new_session(key, dn=dn, password=password)
        session.bind()
        self._sessions[threading.current_thread()] = session

    def disconnect(self) -> None:
        """
        Unbind the current thread's session.
        """
        try:
            self.session.unbind()
        finally:
            del self._sessions[threading.current_thread()]

    def has_session(self) -> bool:
        return threading.current_thread() in self._sessions

    @property
    def session(self) -> LdapSession:
        """
        The current thread's session.  Only valid inside an @atomic method.
        """
        return self._sessions[threading.current_thread()]

    # ------------------------
    # Schema
    # ------------------------

    @property
    def schema(self) -> SchemaRegistry:
        """
        The schema of our server, loaded on first use and shared by every
        manager that talks to the same server.
        """
        with self._schema_lock:
            schema = self._schema_cache.get(self.ldap_server)
            if schema is None:
                if self.has_session():
                    schema = self.session.load_schema()
                else:
                    with self.new_session("read") as session:
                        schema = session.load_schema()
                self._schema_cache[self.ldap_server] = schema
                self.logger.info(
                    "ldapmapper.manager.schema.loaded server=%s schema=%r",
                    self.ldap_server,
                    schema,
                )
        return schema

    def _ensure_schema(self) -> None:
        # The session needs the schema to encode binary attributes properly
        self.session.schema = self.schema

    def reload_schema(self) -> SchemaRegistry:
        """
        Throw away the cached schema for our server and load it again.
        """
        with self._schema_lock:
            self._schema_cache.pop(self.ldap_server, None)
        return self.schema

    # ------------------------
    # DNs
    # ------------------------

    def _rdn_attribute(self) -> str:
        return cast("Any", self.options.pk).ldap_attribute

    def get_dn(self, pk: str, basedn: str | None = None) -> str:
        """
        Given a value for an object primary key, return what the dn for that
        object would look like.
        """
        value = ldap.dn.escape_dn_chars(str(pk))
        return f"{self._rdn_attribute()}={value},{basedn or self.basedn}"

    def dn(self, obj: "Model") -> str | None:
        """
        Compute the distinguished name (DN) for a model instance, or ``None``
        if its primary key is not set yet.
        """
        if not obj._dn:
            pk_value = getattr(obj, cast("str", self.pk))
            obj._dn = self.get_dn(pk_value) if pk_value else None
        return obj._dn

    def base_filter(self) -> list[Any] | None:
        """
        The filter that restricts searches to entries with every object class
        the model requires.
        """
        classes = self.options.required_classes
        if not classes:
            return None
        return ["and", *[["objectClass", name] for name in classes]]

    # ------------------------
    # Reads
    # ------------------------

    @atomic(key="read")
    def search(  # noqa: PLR0913
        self,
        filter: Any = None,  # noqa: A002
        attributes: list[str] | None = None,
        limit: int | None = None,
        scope: str | None = None,
        basedn: str | None = None,
        controls: list[Any] | None = None,
    ) -> list[LDAPData]:
        """
        Search for raw entries of our model matching ``filter``.

        Keyword Args:
            filter: anything :py:func:`~ldapmapper.filters.compile_filter`
                accepts; it is ANDed with the model's object class filter
            attributes: the attributes to retrieve; the model's by default
            limit: stop after this many entries
            scope: ``base``, ``one`` or ``sub``; ``Meta.scope`` by default
            basedn: the DN to search under; ``Meta.basedn`` by default
            controls: server controls to send with the search

        Returns:
            A list of ``(dn, attributes)`` tuples.

        """
        if attributes is None:
            attributes = self.options.attributes
        return self.session.search(
            basedn or cast("str", self.basedn),
            scope=scope or self.scope,
            filter=["and", self.base_filter(), filter],
            attributes=attributes,
            limit=limit,
            controls=controls,
        )

    def find_all(  # noqa: PLR0913
        self,
        filter: Any = None,  # noqa: A002
        attributes: list[str] | None = None,
        limit: int | None = None,
        scope: str | None = None,
        basedn: str | None = None,
        order_by: list[str] | None = None,
    ) -> list["Model"]:
        """
        Return the model instances matching ``filter``.

        Results are ordered by ``order_by`` (field names, ``-`` for
        descending), or ``Meta.ordering``.  If ``Meta.ldap_options`` includes
        ``server_side_sort``, the server does the sorting; otherwise we sort
        the results we got.

        Keyword Args:
            filter: anything :py:func:`~ldapmapper.filters.compile_filter`
                accepts
            attributes: the attributes to retrieve; the model's by default
            limit: stop after this many entries
            scope: ``base``, ``one`` or ``sub``
            basedn: the DN to search under
            order_by: field names to order by

        Returns:
            A list of model instances.

        """
        options = self.options
        if attributes is None:
            attributes = options.attributes
        order_by = list(order_by if order_by is not None else options.ordering)
        controls = None
        server_sort = bool(order_by) and "server_side_sort" in self.ldap_options
        if server_sort:
            keys = [
                ("-" if key.startswith("-") else "")
                + options.get_field(key.lstrip("-")).ldap_attribute
                for key in order_by
            ]
            controls = [ServerSideSortControl(keys)]
        data = self.search(
            filter,
            attributes=attributes,
            limit=limit,
            scope=scope,
            basedn=basedn,
            controls=controls,
        )
        objects = cast(
            "list[Model]", cast("Any", self.model).from_db(attributes, data, many=True)
        )
        if order_by and not server_sort:
            objects = sort_instances(objects, order_by)
        return objects

    def all(self) -> list["Model"]:
        return self.find_all()

    def first(self, filter: Any = None, **kwargs) -> "Model | None":  # noqa: A002
        """
        Return the first instance matching ``filter``, or ``None``.
        """
        objects = self.find_all(filter, limit=1, **kwargs)
        return objects[0] if objects else None

    def count(self, filter: Any = None) -> int:  # noqa: A002
        # "1.1" asks the server for no attributes at all (RFC 4511)
        return len(self.search(filter, attributes=["1.1"]))

    def get(self, pk: Any) -> "Model":
        """
        Return the instance whose primary key is ``pk``.

        Raises:
            DoesNotExist: If no object matches.
            MultipleObjectsReturned: If more than one object matches.

        """
        model = cast("Any", self.model)
        objects = self.find_all([[self._rdn_attribute(), str(pk)]], limit=2)
        if not objects:
            msg = f"A {model.__name__} object matching query does not exist."
            raise model.DoesNotExist(
                msg, operation="get", result_code=32, server_message=msg
            )
        if len(objects) > 1:
            msg = f"More than one {model.__name__} object matched query."
            raise model.MultipleObjectsReturned(msg)
        return objects[0]

    def get_by_dn(self, dn: str) -> "Model":
        """
        Get an object specifically by its DN.  To do this we do a search with
        the basedn set to the dn of the object, with scope ``base``.  This will
        be either the object we're looking for, or nothing.

        Raises:
            DoesNotExist: If no object with this DN exists, or it is not an
                entry of our model.

        """
        model = cast("Any", self.model)
        data = self.search(basedn=dn, scope="base", limit=1)
        if not data:
            msg = f"A {model.__name__} object with dn '{dn}' does not exist."
            raise model.DoesNotExist(
                msg, operation="get_by_dn", result_code=32, server_message=msg
            )
        return model.from_db(self.options.attributes, data)

    def exists(self, value: Any) -> bool:
        """
        Return ``True`` if an entry exists with DN ``value``, or, if ``value``
        does not look like a DN, with primary key ``value``.
        """
        try:
            if "=" in str(value):
                self.get_by_dn(str(value))
            else:
                self.get(value)
        except EntryNotFound:
            return False
        return True

    # ------------------------
    # Writes
    # ------------------------

    @atomic(key="write")
    def add(self, obj: "Model", controls: list[Any] | None = None) -> None:
        """
        Add a new entry for ``obj``.

        Raises:
            EntryAlreadyExist: an entry with this DN already exists.

        """
        obj.ensure_required_classes()
        self._ensure_schema()
        entries = Modlist(self).add(obj)
        self.session.add(cast("str", self.dn(obj)), entries, controls=controls)
        self.logger.info("ldapmapper.manager.add dn=%s", obj.dn)

    @atomic(key="write")
    def modify(self, obj: "Model", controls: list[Any] | None = None) -> bool:
        """
        Write the changes made to ``obj`` since it was loaded.

        If the primary key changed, the entry is renamed first.

        Returns:
            ``True`` if anything was written.

        """
        original = obj._original
        if original is None:
            original = self.get_by_dn(cast("str", obj.dn))._original or {}
        before = {k.lower(): v for k, v in original.items()}
        pk_attribute = self._rdn_attribute()
        old_pk = before.get(pk_attribute.lower())
        new_pk = getattr(obj, cast("str", self.pk))
        renamed = False
        if old_pk and old_pk[0].decode("utf-8").lower() != str(new_pk).lower():
            new_rdn = f"{pk_attribute}={ldap.dn.escape_dn_chars(str(new_pk))}"
            parent = ",".join(ldap.dn.explode_dn(cast("str", obj.dn))[1:])
            self.session.modify_rdn(cast("str", obj.dn), new_rdn, controls=controls)
            obj._dn = f"{new_rdn},{parent}"
            renamed = True
        self._ensure_schema()
        entries = Modlist(self).update(obj, original)
        if not entries:
            self.logger.debug("ldapmapper.manager.modify.no-changes dn=%s", obj.dn)
            return renamed
        self.session.modify(cast("str", obj.dn), entries, controls=controls)
        self.logger.info(
            "ldapmapper.manager.modify dn=%s attributes=%s",
            obj.dn,
            ",".join(attribute for _, attribute, _ in entries),
        )
        return True

    @atomic(key="write")
    def delete(self, pk: Any) -> None:
        """
        Delete the entry whose primary key is ``pk``.

        Raises:
            DoesNotExist: If no object matches.

        """
        obj = self.get(pk)
        self.session.delete(cast("str", obj.dn))
        self.logger.info("ldapmapper.manager.delete dn=%s", obj.dn)

    @atomic(key="write")
    def delete_obj(self, obj: "Model", controls: list[Any] | None = None) -> None:
        self.session.delete(cast("str", obj.dn), controls=controls)
        self.logger.info("ldapmapper.manager.delete dn=%s", obj.dn)

    @atomic(key="write")
    def rename(self, old_dn: str, new_dn: str) -> None:
        """
        Rename an entry, moving it to a new parent if the new DN has one.
        """
        old_parts = ldap.dn.explode_dn(old_dn)
        new_parts = ldap.dn.explode_dn(new_dn)
        new_superior = None
        if [p.lower() for p in old_parts[1:]] != [p.lower() for p in new_parts[1:]]:
            new_superior = ",".join(new_parts[1:])
        self.session.modify_rdn(old_dn, new_parts[0], new_superior=new_superior)
        self.logger.info("ldapmapper.manager.rename old=%s new=%s", old_dn, new_dn)

    def create(self, **kwargs) -> "Model":
        """
        Create, validate and add a new object.

        Raises:
            EntryInvalid: the new object fails validation.

        """
        obj = cast("Any", self.model)(**kwargs)
        obj.save()
        return obj

    def authenticate(self, username: str, password: str) -> bool:
        """
        Try to authenticate a username/password vs our LDAP server.

        If the user does not exist in LDAP, return False.
        If the user exists, but the bind fails, return False.
        Else, return True.

        """
        model = cast("Any", self.model)
        uid_attr = self.options.userid_attribute
        user = self.first([[uid_attr, username]], attributes=[self._rdn_attribute()])
        if user is None:
            self.logger.warning("auth.no_such_user user=%s", username)
            return False
        if not password:
            # An empty password would be an anonymous bind, which always works
            self.logger.warning("auth.empty_password user=%s", username)
            return False
        session = self.new_session("read", dn=user.dn, password=password)
        try:
            session.bind()
        except AuthenticationError:
            self.logger.warning("auth.invalid_credentials user=%s", username)
            return False
        finally:
            session.unbind()
        self.logger.info("auth.success user=%s model=%s", username, model.__name__)
        return True
