"""Credential gating and remote script execution."""
from .schema import ExecMode, SessionStatus, SessionOutcome, FOOTER_PATTERN
from .credentials import (
    Credential,
    CredentialStore,
    EnvCredentialStore,
    MappingCredentialStore,
    CredentialResolver,
)
from .transport import Transport, SSHTransport, SSHSession
from .executor import RemoteExecutor, SessionHandle, Sink

__all__ = [
    "ExecMode",
    "SessionStatus",
    "SessionOutcome",
    "FOOTER_PATTERN",
    "Credential",
    "CredentialStore",
    "EnvCredentialStore",
    "MappingCredentialStore",
    "CredentialResolver",
    "Transport",
    "SSHTransport",
    "SSHSession",
    "RemoteExecutor",
    "SessionHandle",
    "Sink",
]
