"""Auth module - secure storage of the document store credential."""

from .keychain import KeychainManager, StoredCredentials

__all__ = ["KeychainManager", "StoredCredentials"]
