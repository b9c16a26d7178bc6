"""
Error taxonomy for the authorization engine.

Decision functions never raise for "not allowed"; they return False or an
empty list. These exceptions are reserved for malformed input, admin paths
and infrastructure failures.
"""


class RbacError(Exception):
    """Base class for all authorization engine errors."""


class NotFoundError(RbacError):
    """Unknown role, permission, rule or document on an admin path."""


class InvalidInputError(RbacError, ValueError):
    """Malformed identifier, status or level."""


class StoreUnavailableError(RbacError):
    """Backing configuration store could not be reached."""


class RuleTableError(RbacError):
    """The embedded fallback transition table is malformed."""


class ConflictError(RbacError):
    """Mutation conflicts with existing state (duplicate key, role in use)."""


class SystemRoleError(ConflictError):
    """Attempt to update or delete a protected system role."""
