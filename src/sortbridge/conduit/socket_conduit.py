import socket

from sortbridge.conduit import base


class SocketConduit(base.Conduit):
    """
    A conduit that provides communication via a socket.
    :param sock The open, connected socket
    """
    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.read = sock.makefile('rb')
        self.write = sock.makefile('wb')

    @property
    def open(self) -> bool:
        return self.sock.fileno() >= 0

    @property
    def target(self):
        return self.sock

    @property
    def output(self):
        return self.write

    @property
    def input(self):
        return self.read

    def close(self):
        """ closes the socket without waiting for a graceful shutdown from the peer """
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass    # the peer may have closed the socket already
        finally:
            for stream in (self.read, self.write):
                try:
                    stream.close()
                except OSError:
                    pass    # unflushed output on a dead socket
            self.sock.close()


def message_conduit(sock: socket.socket) -> base.MessageConduit:
    return base.MessageConduit(SocketConduit(sock))
