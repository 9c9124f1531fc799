"""Session transports.

The executor only relies on the Transport capability surface:

    open(machine, credential) -> session
    send(session, script)
    stream(session) -> iterator of output text
    exit_status(session) -> int
    close(session)

SSHTransport implements it with paramiko: password authentication, the
script piped into a remote shell, stdout and stderr combined.
"""
import codecs
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterator, Optional

import paramiko

from ..config.network import MachineConfig
from ..errors import TransportError
from ..utils.connection import with_retry
from .credentials import Credential

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Capability surface for one-shot remote script execution."""

    @abstractmethod
    def open(self, machine: MachineConfig, credential: Credential) -> Any:
        """Connect and authenticate. Raises TransportError before anything is sent."""
        pass

    @abstractmethod
    def send(self, session: Any, script: str) -> None:
        """Transmit the script for remote interpretation."""
        pass

    @abstractmethod
    def stream(self, session: Any) -> Iterator[str]:
        """Yield output text as it arrives, until the remote side finishes."""
        pass

    @abstractmethod
    def exit_status(self, session: Any) -> int:
        pass

    @abstractmethod
    def close(self, session: Any) -> None:
        pass


@dataclass
class SSHSession:
    """State of one SSH session."""
    machine: str
    client: paramiko.SSHClient
    command: str
    channel: Optional[paramiko.Channel] = None


class SSHTransport(Transport):
    """Run scripts over SSH with paramiko."""

    def __init__(self, read_size: int = 4096, min_wait: float = 1, max_wait: float = 10):
        self.read_size = read_size
        self.min_wait = min_wait
        self.max_wait = max_wait

    def _connect(self, machine: MachineConfig, credential: Credential) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=machine.host,
                port=machine.port,
                username=machine.username,
                password=credential.secret,
                timeout=machine.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except Exception:
            client.close()
            raise
        return client

    def open(self, machine: MachineConfig, credential: Credential) -> SSHSession:
        if not machine.is_remote:
            raise TransportError(machine.label, "no host configured, machine is not reachable")

        logger.info(f"Connecting to {machine.label} at {machine.host}:{machine.port}")
        connect = with_retry(
            max_attempts=max(1, machine.retries),
            min_wait=self.min_wait,
            max_wait=self.max_wait,
        )(self._connect)

        try:
            client = connect(machine, credential)
        except paramiko.AuthenticationException as e:
            raise TransportError(machine.label, f"authentication failed: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise TransportError(machine.label, f"connection failed: {e}") from e

        logger.info(f"Connected to {machine.label}")
        return SSHSession(machine=machine.label, client=client, command=machine.remote_shell)

    def send(self, session: SSHSession, script: str) -> None:
        try:
            transport = session.client.get_transport()
            if transport is None or not transport.is_active():
                raise TransportError(session.machine, "session is no longer active")
            channel = transport.open_session()
            channel.set_combine_stderr(True)
            channel.exec_command(session.command)
            channel.sendall(script.encode("utf-8"))
            channel.shutdown_write()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(session.machine, f"failed to send script: {e}") from e
        session.channel = channel

    def stream(self, session: SSHSession) -> Iterator[str]:
        if session.channel is None:
            raise TransportError(session.machine, "no script has been sent")

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = session.channel.recv(self.read_size)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    yield text
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(session.machine, f"session dropped: {e}") from e

        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    def exit_status(self, session: SSHSession) -> int:
        if session.channel is None:
            return -1
        return session.channel.recv_exit_status()

    def close(self, session: SSHSession) -> None:
        try:
            session.client.close()
        except Exception as e:
            logger.warning(f"Error closing connection to {session.machine}: {e}")
