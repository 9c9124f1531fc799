"""Error taxonomy for compilation and remote orchestration.

Unit failures on the remote host are not exceptions: they only show up in
the relayed output and the script footer (see SessionOutcome).
"""
from typing import Optional


class NetscriptError(Exception):
    """Base class for errors scoped to a single machine."""

    def __init__(self, machine: Optional[str], message: str):
        self.machine = machine
        self.message = message
        if machine:
            super().__init__(f"{machine}: {message}")
        else:
            super().__init__(message)


class CompileError(NetscriptError):
    """A script could not be compiled for a machine.

    Raised for unknown machines, invalid actions, invalid or duplicate unit
    labels, and unresolved or forward-referenced preconditions.
    """
    pass


class CredentialError(NetscriptError):
    """No credential is available for a machine."""

    def __init__(self, machine: str, message: Optional[str] = None):
        super().__init__(machine, message or f"no credential for machine {machine}")


class TransportError(NetscriptError):
    """Connection, authentication or session failure for a machine."""
    pass
