import socket
import unittest

from hamcrest import assert_that, is_, none, calling, raises

from sortbridge.conduit.socket_conduit import SocketConduit, message_conduit
from sortbridge.protocol.messages import ProtocolError


class SocketConduitTest(unittest.TestCase):
    """ exercises the conduits over a connected socket pair. """

    def setUp(self):
        self.left, self.right = socket.socketpair()
        self.sut = message_conduit(self.left)
        self.peer = message_conduit(self.right)

    def tearDown(self):
        self.sut.close()
        self.peer.close()

    def test_exchange_messages(self):
        self.sut.write_message({'type': 'ping', 'timestamp': 1})
        assert_that(self.peer.read_message(), is_({'type': 'ping', 'timestamp': 1}))
        self.peer.write_message({'type': 'pong'})
        assert_that(self.sut.read_message(), is_({'type': 'pong'}))

    def test_blank_lines_skipped(self):
        self.peer.output.write(b'\n\n{"type": "x"}\n')
        self.peer.output.flush()
        assert_that(self.sut.read_message(), is_({'type': 'x'}))

    def test_bad_frame_then_good_frame(self):
        self.peer.output.write(b'garbage\n{"type": "x"}\n')
        self.peer.output.flush()
        assert_that(calling(self.sut.read_message), raises(ProtocolError))
        assert_that(self.sut.read_message(), is_({'type': 'x'}))

    def test_end_of_stream(self):
        self.peer.close()
        assert_that(self.sut.read_message(), is_(none()))

    def test_close(self):
        assert_that(self.sut.open, is_(True))
        self.sut.close()
        assert_that(self.sut.open, is_(False))
        self.sut.close()

    def test_target(self):
        conduit = SocketConduit(self.left)
        assert_that(conduit.target, is_(self.left))


if __name__ == '__main__':  # pragma: no cover
    unittest.main()
