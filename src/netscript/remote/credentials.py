"""Fail-closed credential lookup.

A machine without a credential is never contacted. The secret itself is
never logged and never shown in a repr.
"""
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Optional

from ..config.network import MachineConfig
from ..errors import CredentialError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Secret for one machine."""
    machine: str
    secret: str = field(repr=False)


class CredentialStore(ABC):
    """Read-only source of machine secrets."""

    @abstractmethod
    def lookup(self, machine: MachineConfig) -> Optional[str]:
        """Return the machine's secret, or None when there is none."""
        pass


class EnvCredentialStore(CredentialStore):
    """Secrets from the environment variable named by ``password_env``."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def lookup(self, machine: MachineConfig) -> Optional[str]:
        return self.environ.get(machine.password_env) or None


class MappingCredentialStore(CredentialStore):
    """Secrets held in memory, keyed by machine label."""

    def __init__(self, secrets: Mapping[str, str]):
        self._secrets = dict(secrets)

    def lookup(self, machine: MachineConfig) -> Optional[str]:
        return self._secrets.get(machine.label) or None


class CredentialResolver:
    """Gate remote access on the presence of a credential."""

    def __init__(self, store: Optional[CredentialStore] = None):
        self.store = store or EnvCredentialStore()

    def resolve(self, machine: MachineConfig) -> Optional[Credential]:
        """Look up a machine's credential; None when absent."""
        secret = self.store.lookup(machine)
        if not secret:
            logger.error(f"FAIL: no credential for machine {machine.label}")
            return None
        logger.info(f"PASS: credential present for {machine.label}")
        return Credential(machine.label, secret)

    def require(self, machine: MachineConfig) -> Credential:
        """Like resolve(), but raise CredentialError when absent."""
        credential = self.resolve(machine)
        if credential is None:
            raise CredentialError(machine.label)
        return credential
