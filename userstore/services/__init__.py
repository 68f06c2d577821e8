"""
Services package exposing the caller-facing operations.
"""

from .user_storage_service import UserStorageService

__all__ = ["UserStorageService"]
