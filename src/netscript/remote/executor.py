"""Remote execution of compiled scripts.

Each session gets its own worker thread, which drives the (blocking)
transport and relays output through an asyncio queue. The coroutine on the
caller's side drains that queue into the caller's sink. Sessions share no
state, so any number can run side by side.

Blocking mode awaits the session and returns a SessionOutcome. Non-blocking
mode starts the session as a task and returns a SessionHandle at once.
Cancelling a handle abandons the session: the local connection is closed,
nothing is signalled to the remote host and nothing is rolled back.
"""
import asyncio
import logging
import threading
from typing import Callable, Optional, Union

from ..config.network import MachineConfig
from ..errors import TransportError
from ..utils.logging_config import timed_section
from .credentials import Credential
from .schema import ExecMode, SessionOutcome, SessionStatus
from .transport import SSHTransport, Transport

logger = logging.getLogger(__name__)

# Receives output text as it arrives
Sink = Callable[[str], None]

_OUTPUT = "output"
_ERROR = "error"
_EXIT = "exit"


class SessionHandle:
    """Handle on a non-blocking session."""

    def __init__(self, machine: str, task: "asyncio.Task[SessionOutcome]"):
        self.machine = machine
        self._task = task

    @property
    def status(self) -> SessionStatus:
        if not self._task.done():
            return SessionStatus.RUNNING
        if self._task.cancelled():
            return SessionStatus.CANCELLED
        if self._task.exception() is not None:
            return SessionStatus.FAILED
        if self._task.result().success:
            return SessionStatus.SUCCEEDED
        return SessionStatus.FAILED

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> SessionOutcome:
        """Wait for the session to end.

        Raises:
            TransportError: If the session could not be opened or dropped
            asyncio.CancelledError: If the handle was cancelled
        """
        return await self._task

    def cancel(self) -> bool:
        """Abandon the session. The remote host keeps whatever was applied."""
        if self._task.done():
            return False
        logger.warning(f"Abandoning session on {self.machine}; no rollback is performed")
        return self._task.cancel()

    def __repr__(self) -> str:
        return f"SessionHandle({self.machine!r}, status={self.status.value})"


class _SessionState:
    """Connection state shared between a session's coroutine and its worker.

    Whichever side finishes first closes the connection, exactly once.
    """

    def __init__(self, transport: Transport, machine: str):
        self.transport = transport
        self.machine = machine
        self.abandoned = threading.Event()
        self._lock = threading.Lock()
        self._session = None
        self._closed = False

    def attach(self, session) -> bool:
        """Record an opened session. False if it was abandoned meanwhile."""
        with self._lock:
            self._session = session
            return not self.abandoned.is_set()

    def abandon(self) -> None:
        self.abandoned.set()
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._session is None or self._closed:
                return
            self._closed = True
            session = self._session
        self.transport.close(session)


class RemoteExecutor:
    """Run compiled scripts on remote machines."""

    def __init__(self, transport: Optional[Transport] = None):
        self.transport = transport or SSHTransport()

    async def run(
        self,
        machine: MachineConfig,
        credential: Credential,
        script: str,
        sink: Sink,
        mode: ExecMode = ExecMode.BLOCKING,
    ) -> Union[SessionOutcome, SessionHandle]:
        """
        Execute a script on a machine.

        Args:
            machine: Target machine
            credential: Credential for the machine
            script: Compiled script text
            sink: Receives output as it arrives
            mode: BLOCKING waits for the outcome; NON_BLOCKING returns a handle

        Returns:
            SessionOutcome (blocking) or SessionHandle (non-blocking)

        Raises:
            TransportError: In blocking mode, on connection/authentication
                failure or a dropped session
        """
        mode = ExecMode(mode)
        if mode is ExecMode.BLOCKING:
            return await self._session(machine, credential, script, sink)

        task = asyncio.create_task(
            self._session(machine, credential, script, sink),
            name=f"session:{machine.label}",
        )
        return SessionHandle(machine.label, task)

    async def _session(
        self,
        machine: MachineConfig,
        credential: Credential,
        script: str,
        sink: Sink,
    ) -> SessionOutcome:
        loop = asyncio.get_running_loop()
        channel: asyncio.Queue = asyncio.Queue()
        state = _SessionState(self.transport, machine.label)

        def emit(kind: str, payload) -> None:
            if state.abandoned.is_set() or loop.is_closed():
                return
            loop.call_soon_threadsafe(channel.put_nowait, (kind, payload))

        worker = threading.Thread(
            target=self._work,
            args=(machine, credential, script, emit, state),
            name=f"netscript-session-{machine.label}",
            daemon=True,
        )

        output: list[str] = []
        async with timed_section("session", machine=machine.label):
            worker.start()
            try:
                while True:
                    kind, payload = await channel.get()
                    if kind == _OUTPUT:
                        output.append(payload)
                        sink(payload)
                    elif kind == _ERROR:
                        raise payload
                    else:
                        exit_code = payload
                        break
            except asyncio.CancelledError:
                # Unblocks a worker waiting on the remote side
                state.abandon()
                raise

        outcome = SessionOutcome.from_output(machine.label, exit_code, "".join(output))
        logger.info(
            f"Session on {machine.label} finished: exit={outcome.exit_code} "
            f"pass={outcome.passed} fail={outcome.failed}"
        )
        return outcome

    def _work(
        self,
        machine: MachineConfig,
        credential: Credential,
        script: str,
        emit: Callable[[str, object], None],
        state: _SessionState,
    ) -> None:
        """Worker thread body: open, send, stream, report the exit status."""
        try:
            session = self.transport.open(machine, credential)
        except TransportError as e:
            logger.error(f"Could not open session on {machine.label}: {e.message}")
            emit(_ERROR, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error opening session on {machine.label}")
            emit(_ERROR, TransportError(machine.label, str(e)))
            return

        try:
            if not state.attach(session):
                logger.info(f"Session on {machine.label} abandoned before the script was sent")
                return
            self.transport.send(session, script)
            for chunk in self.transport.stream(session):
                if state.abandoned.is_set():
                    logger.info(f"Session on {machine.label} abandoned, closing connection")
                    return
                emit(_OUTPUT, chunk)
            emit(_EXIT, self.transport.exit_status(session))
        except TransportError as e:
            if state.abandoned.is_set():
                logger.info(f"Session on {machine.label} abandoned: {e.message}")
            else:
                logger.error(f"Session on {machine.label} failed: {e.message}")
                emit(_ERROR, e)
        except Exception as e:
            logger.exception(f"Unexpected error in session on {machine.label}")
            emit(_ERROR, TransportError(machine.label, str(e)))
        finally:
            state.close()
