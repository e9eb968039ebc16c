"""Credential handling for Asana and Google."""

from gtasks_bridge.auth.credentials import SCOPES, CredentialStore, GoogleCredentialManager

__all__ = ["SCOPES", "CredentialStore", "GoogleCredentialManager"]
