"""Credential store package."""

from credvault.store.backends import PostgresBackend, SQLiteBackend, backend_for_url, normalize_database_url
from credvault.store.base import CredentialStore, OAuthStateRecord
from credvault.store.sql import SQLCredentialStore, create_credential_store

__all__ = [
    "CredentialStore",
    "OAuthStateRecord",
    "PostgresBackend",
    "SQLCredentialStore",
    "SQLiteBackend",
    "backend_for_url",
    "create_credential_store",
    "normalize_database_url",
]
