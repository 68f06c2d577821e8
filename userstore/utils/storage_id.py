"""
Host storage id helpers.

Federated users are known to the host as ``f:<component id>:<external id>``.
Only the external part means anything to the user source.
"""

FEDERATED_PREFIX = "f:"


def keycloak_id(component_id: str, external_id: str) -> str:
    """Build the host-side id for a federated user."""
    return f"{FEDERATED_PREFIX}{component_id}:{external_id}"


def external_id(storage_id: str) -> str:
    """Return the external part of a host storage id.

    Values that are not federated storage ids are returned unchanged, so a
    bare primary key or legacy id passes straight through.

    Example:
        >>> external_id("f:8a3c:42")
        '42'
        >>> external_id("42")
        '42'
    """
    if storage_id.startswith(FEDERATED_PREFIX):
        _, separator, remainder = storage_id[len(FEDERATED_PREFIX) :].partition(":")
        if separator:
            return remainder
    return storage_id
