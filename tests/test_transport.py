import unittest
from unittest.mock import MagicMock, patch

from ssh_session.channel import Channel
from ssh_session.datastructures import ChannelId
from ssh_session.errors import ProtocolError
from ssh_session.transport import ParamikoTransport


def executing_channel(chan_id):
    raw = MagicMock()
    raw.get_id.return_value = chan_id
    raw.closed = False
    raw.eof_received = False
    raw.recv_ready.return_value = False
    raw.recv_stderr_ready.return_value = False
    transport = MagicMock()
    transport.open_session.return_value = raw
    channel = Channel(session_id=1)
    channel.open(transport)
    channel.request_exec("true")
    return channel


class TestSelectRead(unittest.TestCase):
    def setUp(self):
        self.transport = ParamikoTransport()
        self.channels = [executing_channel(0), executing_channel(1)]

    @patch('ssh_session.transport.select.select')
    def test_buffered_data_skips_the_wait(self, mock_select):
        self.channels[1].raw.recv_ready.return_value = True

        self.assertEqual(self.transport.select_read(self.channels, 1.0), [ChannelId(1, 1)])
        mock_select.assert_not_called()

    @patch('ssh_session.transport.select.select')
    def test_stderr_only_output_is_reported(self, mock_select):
        def arrive(readable, writable, errors, wait):
            self.channels[0].raw.recv_stderr_ready.return_value = True
            return [self.channels[0].raw], [], []

        mock_select.side_effect = arrive

        self.assertEqual(self.transport.select_read(self.channels, 0.5), [ChannelId(1, 0)])
        mock_select.assert_called_once_with([c.raw for c in self.channels], [], [], 0.5)

    @patch('ssh_session.transport.select.select')
    def test_wait_expiry_returns_nothing(self, mock_select):
        mock_select.return_value = ([], [], [])

        self.assertEqual(self.transport.select_read(self.channels, 0.5), [])

    @patch('ssh_session.transport.select.select')
    def test_select_failure_is_protocol_error(self, mock_select):
        mock_select.side_effect = OSError(9, "Bad file descriptor")

        with self.assertRaises(ProtocolError):
            self.transport.select_read(self.channels, 0.5)
        self.assertIn("Bad file descriptor", self.transport.last_error)


if __name__ == '__main__':
    unittest.main()
