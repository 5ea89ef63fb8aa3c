import socket
import unittest
from unittest.mock import MagicMock

import paramiko

from ssh_session.channel import Channel
from ssh_session.datastructures import ChannelId, ChannelState, Stream
from ssh_session.errors import ChannelError, ProtocolError


class TestChannelId(unittest.TestCase):
    def test_round_trip_text_form(self):
        channel_id = ChannelId(3, 17)
        self.assertEqual(str(channel_id), "3.17")
        self.assertEqual(ChannelId.parse("3.17"), channel_id)

    def test_parse_tolerates_surrounding_whitespace(self):
        self.assertEqual(ChannelId.parse(" 1.0\n"), ChannelId(1, 0))

    def test_malformed_tokens_are_protocol_errors(self):
        for token in ["", "1", "1.", ".2", "1.2.3", "a.b", "-1.2", "1:2", None, 12]:
            with self.subTest(token=token):
                with self.assertRaises(ProtocolError):
                    ChannelId.parse(token)

    def test_usable_as_dict_key(self):
        table = {ChannelId(1, 2): "x"}
        self.assertEqual(table[ChannelId.parse("1.2")], "x")


class TestChannel(unittest.TestCase):
    def setUp(self):
        self.raw = MagicMock()
        self.raw.get_id.return_value = 5
        self.raw.closed = False
        self.raw.eof_received = False
        self.raw.recv_ready.return_value = False
        self.raw.recv_stderr_ready.return_value = False
        self.transport = MagicMock()
        self.transport.open_session.return_value = self.raw
        self.channel = Channel(session_id=9)

    def open_and_exec(self, command="uname -a"):
        self.channel.open(self.transport, timeout=4)
        self.channel.request_exec(command)

    def test_open_assigns_identifier(self):
        channel_id = self.channel.open(self.transport, timeout=4)

        self.assertEqual(channel_id, ChannelId(9, 5))
        self.assertEqual(self.channel.id, channel_id)
        self.assertEqual(self.channel.state, ChannelState.OPENED)
        self.transport.open_session.assert_called_once_with(timeout=4)

    def test_exec_before_open_is_rejected(self):
        with self.assertRaises(ChannelError):
            self.channel.request_exec("true")

    def test_exec_moves_to_executing(self):
        self.open_and_exec("uptime")

        self.raw.exec_command.assert_called_once_with("uptime")
        self.assertEqual(self.channel.state, ChannelState.EXECUTING)

    def test_exec_failure_becomes_channel_error(self):
        self.raw.exec_command.side_effect = paramiko.SSHException("Channel closed.")
        self.channel.open(self.transport)

        with self.assertRaises(ChannelError) as ctx:
            self.channel.request_exec("true")
        self.assertIn("Channel closed", str(ctx.exception))
        self.assertEqual(self.channel.state, ChannelState.OPENED)

    def test_read_returns_empty_when_nothing_buffered(self):
        self.open_and_exec()

        self.assertEqual(self.channel.read(Stream.STDOUT, 4096), b"")
        self.assertEqual(self.channel.read(Stream.STDERR, 4096), b"")
        self.raw.recv.assert_not_called()
        self.raw.recv_stderr.assert_not_called()

    def test_read_picks_the_right_stream(self):
        self.open_and_exec()
        self.raw.recv_ready.return_value = True
        self.raw.recv_stderr_ready.return_value = True
        self.raw.recv.return_value = b"out"
        self.raw.recv_stderr.return_value = b"err"

        self.assertEqual(self.channel.read(Stream.STDOUT, 10), b"out")
        self.assertEqual(self.channel.read(Stream.STDERR, 10), b"err")
        self.raw.recv.assert_called_once_with(10)
        self.raw.recv_stderr.assert_called_once_with(10)

    def test_read_timeout_is_not_an_error(self):
        self.open_and_exec()
        self.raw.recv_ready.return_value = True
        self.raw.recv.side_effect = socket.timeout()

        self.assertEqual(self.channel.read(Stream.STDOUT, 10), b"")

    def test_read_failure_becomes_channel_error(self):
        self.open_and_exec()
        self.raw.recv_ready.return_value = True
        self.raw.recv.side_effect = OSError("connection reset")

        with self.assertRaises(ChannelError):
            self.channel.read(Stream.STDOUT, 10)

    def test_eof_waits_for_buffered_output(self):
        self.open_and_exec()
        self.raw.eof_received = True
        self.raw.recv_ready.return_value = True

        self.assertFalse(self.channel.is_eof())

        self.raw.recv_ready.return_value = False
        self.assertTrue(self.channel.is_eof())
        self.assertEqual(self.channel.state, ChannelState.EOF)

    def test_exit_status_after_eof(self):
        self.open_and_exec()
        self.raw.eof_received = True
        self.raw.exit_status_ready.return_value = True
        self.raw.recv_exit_status.return_value = 42
        self.channel.is_eof()

        self.assertEqual(self.channel.exit_status(), 42)

    def test_exit_status_missing_returns_minus_one(self):
        self.open_and_exec()
        self.raw.eof_received = True
        self.raw.exit_status_ready.return_value = False
        self.raw.status_event.wait.return_value = False
        self.channel.is_eof()

        self.assertEqual(self.channel.exit_status(wait=0), -1)
        self.raw.status_event.wait.assert_called_once_with(0)

    def test_late_exit_status_is_awaited_on_the_event(self):
        self.open_and_exec()
        self.raw.eof_received = True
        self.raw.exit_status_ready.return_value = False
        self.raw.status_event.wait.return_value = True
        self.raw.recv_exit_status.return_value = 7
        self.channel.is_eof()

        self.assertEqual(self.channel.exit_status(), 7)
        self.raw.status_event.wait.assert_called_once_with(Channel.EXIT_STATUS_WAIT)

    def test_ready_exit_status_does_not_wait(self):
        self.open_and_exec()
        self.raw.eof_received = True
        self.raw.exit_status_ready.return_value = True
        self.raw.recv_exit_status.return_value = 0
        self.channel.is_eof()

        self.assertEqual(self.channel.exit_status(), 0)
        self.raw.status_event.wait.assert_not_called()

    def test_close_is_idempotent(self):
        self.open_and_exec()

        self.channel.close()
        self.channel.close()

        self.raw.shutdown_write.assert_called_once()
        self.raw.close.assert_called_once()
        self.assertEqual(self.channel.state, ChannelState.CLOSED)

    def test_close_survives_transport_errors(self):
        self.open_and_exec()
        self.raw.shutdown_write.side_effect = EOFError()
        self.raw.close.side_effect = OSError("gone")

        self.channel.close()

        self.assertEqual(self.channel.state, ChannelState.CLOSED)

    def test_close_unopened_channel(self):
        self.channel.close()
        self.assertEqual(self.channel.state, ChannelState.CLOSED)

    def test_has_pending_tracks_eof_and_data(self):
        self.assertFalse(self.channel.has_pending())
        self.open_and_exec()
        self.assertFalse(self.channel.has_pending())
        self.raw.recv_stderr_ready.return_value = True
        self.assertTrue(self.channel.has_pending())


if __name__ == '__main__':
    unittest.main()
