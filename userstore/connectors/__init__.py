"""
Connectors for the external user source.
"""

from userstore.connectors.authuser import AuthUserConnector, create_authuser_connector

__all__ = [
    "AuthUserConnector",
    "create_authuser_connector",
]
