from abc import abstractmethod
from io import IOBase

from sortbridge.protocol import messages


class Conduit:
    """
    A conduit allows two-way communication. It provides a file-like input endpoint and a file-like output endpoint.
    """

    @property
    @abstractmethod
    def target(self):
        raise NotImplementedError

    @property
    @abstractmethod
    def input(self) -> IOBase:
        """ fetches the I/O stream that provides input.
            Callers can use the usual readXXX() methods. """
        raise NotImplementedError

    @property
    @abstractmethod
    def output(self) -> IOBase:
        """ fetches the I/O stream that provides output.
            Callers can use the usual writeXXX() methods. """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ determines if this conduit is open. When open, the streams provided by
            input and output can be read from/written to."""
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """
        Closes both the input and output streams.
        """
        raise NotImplementedError


class ConduitDecorator(Conduit):
    """
    Wraps another conduit and delegates to its methods, so subclasses can
    override some behaviors while keeping others unchanged.
    """

    def __init__(self, decorate: Conduit):
        self.decorate = decorate

    @property
    def target(self):
        return self.decorate.target

    def close(self):
        self.decorate.close()

    @property
    def input(self) -> IOBase:
        return self.decorate.input

    @property
    def output(self) -> IOBase:
        return self.decorate.output

    @property
    def open(self) -> bool:
        return self.decorate.open


class MessageConduit(ConduitDecorator):
    """
    Reads and writes whole messages, one JSON object per line, over the decorated conduit.
    """

    def read_message(self):
        """
        Blocks until the next frame arrives.
        :return: the decoded message, or None when the peer has closed the stream.
        :raises ProtocolError: the frame could not be decoded. The stream remains usable.
        """
        while True:
            line = self.input.readline()
            if not line:
                return None
            if line.strip():
                return messages.decode(line)

    def write_message(self, message):
        out = self.output
        out.write(messages.encode(message))
        out.flush()
