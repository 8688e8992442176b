"""Credential broker package."""

from stackdeploy.credentials.broker import CredentialBroker

__all__ = ["CredentialBroker"]
