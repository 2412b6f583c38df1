"""Credential Vault: OAuth session manager and encrypted API key store."""
