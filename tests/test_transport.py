"""Tests for the SSH transport (paramiko mocked)."""
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from netscript.config import MachineConfig, MachineRole
from netscript.errors import TransportError
from netscript.remote import Credential, SSHSession, SSHTransport


def machine(**kwargs):
    settings = {"label": "r1", "role": MachineRole.ROUTER, "host": "10.0.0.1", "retries": 3}
    settings.update(kwargs)
    return MachineConfig(**settings)


CREDENTIAL = Credential("r1", "s3cret")


@pytest.fixture
def transport():
    return SSHTransport(read_size=4, min_wait=0.01, max_wait=0.01)


@pytest.fixture
def ssh_client():
    with patch("paramiko.SSHClient") as client_cls:
        client = MagicMock()
        client_cls.return_value = client
        yield client


class TestOpen:
    """Tests for opening sessions."""

    def test_connect_with_password(self, transport, ssh_client):
        """Connects with password auth, agent and key lookup disabled."""
        session = transport.open(machine(username="admin", port=2222, timeout=5), CREDENTIAL)

        ssh_client.connect.assert_called_once_with(
            hostname="10.0.0.1",
            port=2222,
            username="admin",
            password="s3cret",
            timeout=5,
            allow_agent=False,
            look_for_keys=False,
        )
        assert isinstance(session, SSHSession)
        assert session.machine == "r1"
        assert session.command == "/bin/bash -s"

    def test_no_host(self, transport, ssh_client):
        """Machines without a host are unreachable."""
        with pytest.raises(TransportError, match="no host configured"):
            transport.open(machine(host=None), CREDENTIAL)
        ssh_client.connect.assert_not_called()

    def test_authentication_failure(self, transport, ssh_client):
        """Rejected credentials fail at once without retrying."""
        ssh_client.connect.side_effect = paramiko.AuthenticationException("Authentication failed.")

        with pytest.raises(TransportError, match="authentication failed") as exc:
            transport.open(machine(), CREDENTIAL)

        assert exc.value.machine == "r1"
        assert ssh_client.connect.call_count == 1
        ssh_client.close.assert_called()

    def test_connection_retried(self, transport, ssh_client):
        """Refused connections are retried up to the machine's retries."""
        ssh_client.connect.side_effect = [ConnectionRefusedError("refused"), None]

        transport.open(machine(retries=3), CREDENTIAL)
        assert ssh_client.connect.call_count == 2

    def test_connection_failure(self, transport, ssh_client):
        """Exhausted retries become a TransportError."""
        ssh_client.connect.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(TransportError, match="connection failed"):
            transport.open(machine(retries=2), CREDENTIAL)
        assert ssh_client.connect.call_count == 2


class TestSession:
    """Tests for sending scripts and streaming output."""

    def session(self, chunks, exit_code=0):
        channel = MagicMock()
        channel.recv.side_effect = list(chunks) + [b""]
        channel.recv_exit_status.return_value = exit_code

        client = MagicMock()
        client.get_transport.return_value.is_active.return_value = True
        client.get_transport.return_value.open_session.return_value = channel
        return SSHSession(machine="r1", client=client, command="/bin/bash -s"), channel

    def test_send(self, transport):
        """The script is piped into the remote shell."""
        session, channel = self.session([])
        transport.send(session, "echo hi\n")

        channel.set_combine_stderr.assert_called_once_with(True)
        channel.exec_command.assert_called_once_with("/bin/bash -s")
        channel.sendall.assert_called_once_with(b"echo hi\n")
        channel.shutdown_write.assert_called_once()
        assert session.channel is channel

    def test_send_inactive(self, transport):
        """Sending on a dead connection fails."""
        session, _ = self.session([])
        session.client.get_transport.return_value.is_active.return_value = False
        with pytest.raises(TransportError, match="no longer active"):
            transport.send(session, "echo hi\n")

    def test_stream(self, transport):
        """Output is decoded as it arrives."""
        session, _ = self.session([b"pass", b": a\n"])
        transport.send(session, "")
        assert "".join(transport.stream(session)) == "pass: a\n"

    def test_stream_split_utf8(self, transport):
        """Multibyte characters split across reads are reassembled."""
        data = "café\n".encode("utf-8")
        session, _ = self.session([data[:4], data[4:]])
        transport.send(session, "")
        assert "".join(transport.stream(session)) == "café\n"

    def test_stream_dropped(self, transport):
        """A dropped connection mid-stream is a TransportError."""
        session, channel = self.session([])
        transport.send(session, "")
        channel.recv.side_effect = OSError("connection reset")
        with pytest.raises(TransportError, match="session dropped"):
            list(transport.stream(session))

    def test_stream_before_send(self, transport):
        """Streaming needs a sent script."""
        session, _ = self.session([])
        with pytest.raises(TransportError, match="no script has been sent"):
            list(transport.stream(session))

    def test_exit_status(self, transport):
        """Exit status comes from the channel."""
        session, _ = self.session([], exit_code=3)
        transport.send(session, "")
        assert transport.exit_status(session) == 3

    def test_close(self, transport):
        """Closing closes the client; errors are only logged."""
        session, _ = self.session([])
        session.client.close.side_effect = OSError("already closed")
        transport.close(session)
        session.client.close.assert_called_once()
