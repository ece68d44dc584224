"""


Sorting Line Bridge

- Connector: a transport to one remote endpoint. SocketConnector speaks newline-delimited JSON over TCP,
  connecting and reading on a background thread.
- EndpointConnection - keeps one endpoint open. When the transport fails, the peer closes it, or liveness
  probes go unanswered, it reconnects after a fixed interval, up to a bound. Past the bound the endpoint is
  exhausted until reset.
- Orchestrator - one EndpointConnection per configured endpoint. Broadcasts outbound messages, tags inbound
  messages with their source and tracks the overall connectivity (connected, partial, disconnected).
- Heartbeats come in two tiers:
 - transport liveness - ping/pong per connection, owned by the connection's LivenessProbe
 - device liveness - deviceHeartbeat messages relayed from the devices, swept for staleness by the
   DeviceHeartbeatMonitor
- ActuatorLoadBalancer - decides whether a package on a path is diverted, and by which actuator. The least
  used actuator wins, ties broken at random.
- SignalTranslator - a trigger signal becomes a package and a packageReport broadcast; an inbound
  packageReport becomes a SortDecision.
- Relay - the server that endpoints subscribe to, next to the signal source.


## Threading

Everything that changes state runs on a single EventLoop: connector events, liveness probes, heartbeat
sweeps and reconnect timers. Socket connect and reads block, so each connector reads on its own daemon
thread and posts what it reads to the loop.

"""

__version__ = '0.1.0'
