"""
The connector interfaces with an external endpoint that communicates via a conduit using the message protocol.

A connector is used for one connection attempt: it is opened once and closed once.
"""
