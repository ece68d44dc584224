"""
The conduit package provides an abstraction of a bi-directional stream to a specified endpoint.
The concrete implementation is a TCP socket.
"""
