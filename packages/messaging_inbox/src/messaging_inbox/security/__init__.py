"""Credential encryption at rest."""

from messaging_inbox.security.vault import CredentialVault, DecryptionError, get_vault

__all__ = [
    "CredentialVault",
    "DecryptionError",
    "get_vault",
]
