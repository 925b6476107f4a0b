"""
Exception hierarchy for ldapmapper.

Everything raised on purpose by this package derives from
:py:class:`LdapMapperError`.  python-ldap exceptions are translated into the
classes below at the connection boundary (see
:py:func:`ldapmapper.connection.translate_ldap_error`), so callers never need
to import :py:mod:`ldap` just to handle a failure.
"""

from typing import Any

from django.core.exceptions import ImproperlyConfigured, ValidationError


class LdapMapperError(Exception):
    """Base class for all ldapmapper errors."""


class ConfigurationError(LdapMapperError, ImproperlyConfigured):
    """
    Raised for invalid configuration: an unknown bind method, bind mode or
    search scope.
    """


class ConnectionError(LdapMapperError):  # noqa: A001
    """
    Raised when we can't talk to the LDAP server: connect failures, failed
    binds and server disconnects.
    """


class AuthenticationError(ConnectionError):
    """Raised when the server rejects our bind credentials."""


class InvalidFilterOperator(LdapMapperError, ValueError):
    """
    Raised when a filter expression uses an operator other than ``and``,
    ``&``, ``or`` or ``|``.

    Args:
        operator: the offending operator token
        expression: the expression we were compiling

    """

    def __init__(self, operator: Any, expression: Any = None) -> None:
        self.operator = operator
        self.expression = expression
        super().__init__(f"Invalid filter operator: {operator!r}")


class UnknownAttribute(LdapMapperError, KeyError):
    """Raised when an attribute name is not known to the schema or model."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown attribute: {name!r}")

    def __str__(self) -> str:
        return self.args[0]


class ObjectClassError(LdapMapperError):
    """
    Raised when an entry's object classes would contain classes the server
    schema does not know about.
    """

    def __init__(self, message: str, classes: list[str] | None = None) -> None:
        self.classes = list(classes or [])
        super().__init__(message)


class RequiredObjectClassMissed(ObjectClassError):
    """
    Raised when a change to an entry's object classes would drop a class that
    its model requires.
    """


class OperationError(LdapMapperError):
    """
    Raised when the LDAP server rejects an operation.

    Args:
        message: a human readable description of what went wrong

    Keyword Args:
        operation: the name of the operation, e.g. ``add``
        result_code: the LDAP result code the server returned
        server_message: the diagnostic message the server returned

    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        result_code: int | None = None,
        server_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.result_code = result_code
        self.server_message = server_message
        super().__init__(message)


class EntryNotFound(OperationError):
    """Raised when the entry we were looking for does not exist."""


class EntryAlreadyExist(OperationError):
    """Raised when we try to add an entry whose DN is already taken."""


class StrongAuthenticationRequired(OperationError):
    """Raised when the server wants a stronger bind before allowing a write."""


class OperationNotPermitted(OperationError):
    """
    Raised when the server refuses an operation because of access controls,
    or because it is unwilling to perform it.
    """


class ObjectClassViolation(OperationError):
    """Raised when the server refuses an entry as violating its object classes."""


class EntryInvalid(LdapMapperError, ValidationError):
    """
    Raised by :py:meth:`ldapmapper.models.Model.save` when the entry fails
    validation.  It carries the same ``error_dict`` as the
    :py:class:`~django.core.exceptions.ValidationError` it was built from.
    """

    def __init__(self, message: Any, code: str | None = None, params: Any = None):
        ValidationError.__init__(self, message, code=code, params=params)

    def __str__(self) -> str:
        return ValidationError.__str__(self)
