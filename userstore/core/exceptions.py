"""
Exception hierarchy for the authuser federation core.

Lookups that match nothing are not errors: they return ``None`` or a
``NOT_FOUND`` resolution. Everything below signals that an answer could not
be produced at all.
"""


class UserStoreError(Exception):
    """Base exception for all userstore failures."""


class ConfigurationError(UserStoreError):
    """Exception raised when the runtime configuration is invalid or incomplete."""


class DatabasePoolError(UserStoreError):
    """Exception raised when database pool operations fail."""


class AuthUserUnavailableError(UserStoreError):
    """Exception raised when the authuser source cannot be reached or a query fails."""


class AuthUserValidationError(ConfigurationError):
    """Exception raised when a configured table or column identifier is invalid."""


class UserRecordMappingError(UserStoreError):
    """Exception raised when a row cannot be turned into a user record."""
