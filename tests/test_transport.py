"""Tests for transport module."""

import errno
import socket
from unittest.mock import MagicMock, patch

import pytest

from rawping.checksum import verify
from rawping.errors import TransportError, TransportTimeout
from rawping.packet import EchoHeader, build_echo_request
from rawping.transport import RECV_BUFFER_SIZE, Transport


@pytest.fixture
def mock_sock():
    with patch("rawping.transport.socket.socket") as mock_socket_class:
        sock = MagicMock()
        mock_socket_class.return_value = sock
        yield sock


class TestOpen:
    """Tests for Transport.open."""

    def test_socket_options(self, mock_sock):
        """Test the raw socket gets the requested TTL."""
        transport = Transport.open(ttl=64, recv_timeout_ms=1000, send_timeout_ms=500)

        mock_sock.setsockopt.assert_called_once_with(socket.IPPROTO_IP, socket.IP_TTL, 64)
        assert transport.recv_timeout_ms == 1000
        assert transport.send_timeout_ms == 500

    @patch("rawping.transport.socket.socket")
    def test_permission_denied(self, mock_socket_class):
        """Test opening a raw socket without root privileges."""
        mock_socket_class.side_effect = PermissionError(errno.EPERM, "Operation not permitted")

        with pytest.raises(TransportError, match="Permission denied") as excinfo:
            Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)
        assert excinfo.value.errno == errno.EPERM

    @patch("rawping.transport.socket.socket")
    def test_socket_failure(self, mock_socket_class):
        """Test any other socket creation failure."""
        mock_socket_class.side_effect = OSError(errno.EMFILE, "Too many open files")

        with pytest.raises(TransportError, match="Cannot create socket"):
            Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)

    def test_option_failure_closes_socket(self, mock_sock):
        """Test the socket is released when setting the TTL fails."""
        mock_sock.setsockopt.side_effect = OSError(errno.EINVAL, "Invalid argument")

        with pytest.raises(TransportError, match="Cannot set TTL"):
            Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)
        mock_sock.close.assert_called_once()


class TestSend:
    """Tests for Transport.send."""

    @patch("rawping.packet.now_ms", return_value=31337)
    def test_send_restamps_frame(self, mock_now, mock_sock):
        """Test the frame is stamped right before it is written."""
        mock_sock.sendto.return_value = 32
        transport = Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=250)

        frame = build_echo_request(32, sequence=1, identifier=2, timestamp=0)
        assert transport.send("10.0.0.1", frame) == 32

        sent, address = mock_sock.sendto.call_args[0]
        assert address == ("10.0.0.1", 0)
        assert EchoHeader.unpack(sent).timestamp == 31337
        assert verify(sent)
        mock_sock.settimeout.assert_called_with(0.25)

    def test_send_timeout(self, mock_sock):
        """Test a send that times out."""
        mock_sock.sendto.side_effect = socket.timeout("timed out")
        transport = Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)

        with pytest.raises(TransportTimeout):
            transport.send("10.0.0.1", build_echo_request(32, 0, 1))

    def test_send_failure(self, mock_sock):
        """Test a send that fails outright."""
        mock_sock.sendto.side_effect = OSError(errno.ENETUNREACH, "Network is unreachable")
        transport = Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)

        with pytest.raises(TransportError) as excinfo:
            transport.send("10.0.0.1", build_echo_request(32, 0, 1))
        assert not isinstance(excinfo.value, TransportTimeout)
        assert excinfo.value.errno == errno.ENETUNREACH


class TestReceive:
    """Tests for Transport.receive."""

    def test_receive(self, mock_sock):
        """Test reading a frame."""
        mock_sock.recvfrom.return_value = (b"\x45" + bytes(27), ("192.168.1.1", 0))
        transport = Transport.open(ttl=30, recv_timeout_ms=2000, send_timeout_ms=1000)

        sender, frame, bytes_read = transport.receive()

        assert sender == "192.168.1.1"
        assert bytes_read == len(frame) == 28
        mock_sock.recvfrom.assert_called_once_with(RECV_BUFFER_SIZE)
        mock_sock.settimeout.assert_called_with(2.0)

    def test_timeout_override_only_shortens(self, mock_sock):
        """Test a per-call timeout never exceeds the configured one."""
        mock_sock.recvfrom.return_value = (bytes(28), ("192.168.1.1", 0))
        transport = Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)

        transport.receive(timeout_ms=300)
        mock_sock.settimeout.assert_called_with(0.3)
        transport.receive(timeout_ms=5000)
        mock_sock.settimeout.assert_called_with(1.0)

    def test_spent_timeout(self, mock_sock):
        """Test a used up timeout fails without touching the socket."""
        transport = Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)

        with pytest.raises(TransportTimeout):
            transport.receive(timeout_ms=0)
        mock_sock.recvfrom.assert_not_called()

    def test_receive_timeout(self, mock_sock):
        """Test the timeout is reported as TransportTimeout."""
        mock_sock.recvfrom.side_effect = socket.timeout("timed out")
        transport = Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)

        with pytest.raises(TransportTimeout):
            transport.receive()

    def test_receive_failure(self, mock_sock):
        """Test any other receive failure."""
        mock_sock.recvfrom.side_effect = OSError(errno.EBADF, "Bad file descriptor")
        transport = Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000)

        with pytest.raises(TransportError) as excinfo:
            transport.receive()
        assert not isinstance(excinfo.value, TransportTimeout)


class TestClose:
    """Tests for closing a Transport."""

    def test_context_manager_closes(self, mock_sock):
        """Test leaving the with block closes the socket."""
        with Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000):
            mock_sock.close.assert_not_called()
        mock_sock.close.assert_called_once()

    def test_closes_on_error(self, mock_sock):
        """Test the socket is closed when the block raises."""
        with pytest.raises(RuntimeError):
            with Transport.open(ttl=30, recv_timeout_ms=1000, send_timeout_ms=1000):
                raise RuntimeError("boom")
        mock_sock.close.assert_called_once()
