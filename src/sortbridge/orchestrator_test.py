from unittest import TestCase
from unittest.mock import Mock

from hamcrest import assert_that, is_, calling, raises, empty, has_entries, has_key

from sortbridge.connector.base import ConnectionNotConnectedError
from sortbridge.endpoint import ConnectionState
from sortbridge.endpoint_test import FakeConnectorFactory
from sortbridge.config.settings import ConnectionSettings
from sortbridge.heartbeat import DeviceHeartbeatMonitor, HeartbeatStatus
from sortbridge.orchestrator import Orchestrator, UnknownEndpointError, ConnectivitySummary, InboundMessage, \
    ConnectivityChangedEvent, OrchestratorEndpointExhaustedEvent
from sortbridge.support.loop import EventLoop
from sortbridge.support.loop_test import FakeClock

A = '10.0.0.1:8080'
B = '10.0.0.2:8081'


class OrchestratorTest(TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.loop = EventLoop(self.clock)
        self.factory = FakeConnectorFactory()
        self.settings = ConnectionSettings(A, [B], reconnect_interval=5, max_reconnect_attempts=3,
                                           network_timeout=30, ping_interval=20)
        self.monitor = DeviceHeartbeatMonitor(self.loop, 90, 15)
        self.sut = Orchestrator(self.settings.addresses(), self.loop, self.settings, self.monitor, self.factory)
        self.events = []
        self.sut.events.add(self.events.append)

    def connector(self, key):
        return [c for c in self.factory.created if c.endpoint.key() == key][-1]

    def accept(self, key):
        self.connector(key).accept()
        self.loop.run_pending()

    def receive(self, key, message):
        self.connector(key).receive(message)
        self.loop.run_pending()

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]

    def test_one_connection_per_endpoint(self):
        sut = Orchestrator([A, B, 'tcp://' + A], self.loop, self.settings, connector_factory=self.factory)
        assert_that(sorted(sut.connections), is_([A, B]))

    def test_unknown_endpoint(self):
        assert_that(calling(self.sut.connection).with_args('nowhere:1'), raises(UnknownEndpointError))
        assert_that(calling(self.sut.connect).with_args('nowhere:1'), raises(UnknownEndpointError))

    def test_connect_all_starts_sweep(self):
        self.sut.connect_all()
        assert_that(len(self.factory.created), is_(2))
        assert_that(self.monitor.running, is_(True))
        assert_that(self.sut.summary(), is_(ConnectivitySummary.disconnected))

    def test_summary(self):
        self.sut.connect_all()
        self.accept(A)
        assert_that(self.sut.summary(), is_(ConnectivitySummary.partial))
        assert_that(self.sut.connected_count(), is_(1))
        self.accept(B)
        assert_that(self.sut.summary(), is_(ConnectivitySummary.connected))

    def test_requests_initial_data_on_open(self):
        self.sut.connect_all()
        self.accept(A)
        assert_that(self.connector(A).sent_types(), is_(['requestInitialData']))
        assert_that(self.connector(B).sent, is_(empty()))

    def test_connectivity_events(self):
        self.sut.connect_all()
        self.accept(A)
        changed = self.of_type(ConnectivityChangedEvent)[-1]
        assert_that(changed.endpoint, is_(A))
        assert_that(changed.state, is_(ConnectionState.open))
        assert_that(changed.summary, is_(ConnectivitySummary.partial))
        assert_that(changed.connected_count, is_(1))

    def test_broadcast_counts_open_endpoints(self):
        self.sut.connect_all()
        self.accept(A)
        assert_that(self.sut.broadcast({'type': 'packageReport', 'data': {}}), is_(1))
        self.accept(B)
        assert_that(self.sut.broadcast({'type': 'packageReport', 'data': {}}), is_(2))

    def test_broadcast_with_nothing_open(self):
        assert_that(self.sut.broadcast({'type': 'packageReport'}), is_(0))

    def test_send_to(self):
        self.sut.connect_all()
        self.accept(A)
        self.sut.send_to(A, {'type': 'x'})
        assert_that(self.connector(A).sent_types()[-1], is_('x'))
        assert_that(calling(self.sut.send_to).with_args(B, {'type': 'x'}), raises(ConnectionNotConnectedError))
        assert_that(calling(self.sut.send_to).with_args('other:1', {'type': 'x'}), raises(UnknownEndpointError))

    def test_inbound_messages_are_tagged(self):
        handler = Mock()
        everything = Mock()
        self.sut.subscribe('packageReport', handler)
        self.sut.messages.add(everything)
        self.sut.connect_all()
        self.accept(A)
        self.accept(B)
        self.receive(A, {'type': 'packageReport', 'data': {'packageId': 'P1'}})
        self.receive(B, {'type': 'packageReport', 'data': {'packageId': 'P2'}})
        self.receive(B, {'type': 'systemMessage'})
        assert_that([c[0][0] for c in handler.call_args_list], is_([
            InboundMessage(A, 'packageReport', {'packageId': 'P1'}),
            InboundMessage(B, 'packageReport', {'packageId': 'P2'})]))
        assert_that(everything.call_count, is_(3))
        assert_that(everything.call_args[0][0].data, is_({}))

    def test_unsubscribe(self):
        handler = Mock()
        self.sut.subscribe('packageReport', handler)
        self.sut.unsubscribe('packageReport', handler)
        self.sut.unsubscribe('other', handler)
        self.sut.connect_all()
        self.accept(A)
        self.receive(A, {'type': 'packageReport', 'data': {}})
        handler.assert_not_called()

    def test_device_heartbeats_feed_monitor(self):
        self.sut.connect_all()
        self.accept(B)
        self.receive(B, {'type': 'deviceHeartbeat', 'data': {'deviceId': 'CAM_SKU_01', 'tcpConnected': True}})
        record = self.monitor.status('CAM_SKU_01')
        assert_that(record.source, is_(B))
        assert_that(record.status, is_('ONLINE'))

    def test_connected_message_device_info_feeds_monitor(self):
        self.sut.connect_all()
        self.accept(A)
        self.receive(A, {'type': 'connected', 'data': {'deviceInfo': {'deviceId': 'D1', 'tcpConnected': False}}})
        assert_that(self.monitor.status('D1').status, is_('OFFLINE'))

    def test_heartbeat_without_device_is_dropped(self):
        everything = Mock()
        self.sut.messages.add(everything)
        self.sut.connect_all()
        self.accept(A)
        self.receive(A, {'type': 'deviceHeartbeat', 'data': {'status': 'ONLINE'}})
        everything.assert_not_called()
        assert_that(self.monitor.records(), is_(empty()))

    def test_device_timeout_while_transport_open(self):
        self.sut.connect_all()
        self.accept(A)
        self.receive(A, {'type': 'deviceHeartbeat', 'data': {'deviceId': 'D1', 'tcpConnected': True}})
        for _ in range(7):
            self.clock.advance(15)
            self.receive(A, {'type': 'pong'})
        assert_that(self.sut.connection(A).is_open, is_(True))
        assert_that(self.monitor.status('D1').heartbeat_status, is_(HeartbeatStatus.timeout))

    def test_exhausted_endpoint_is_reported_and_kept(self):
        self.sut.connect_all()
        self.accept(A)
        for _ in range(3):
            self.connector(B).drop()
            self.loop.run_pending()
            self.clock.advance(5)
            self.receive(A, {'type': 'pong'})
        exhausted = self.of_type(OrchestratorEndpointExhaustedEvent)
        assert_that(len(exhausted), is_(1))
        assert_that(exhausted[0].endpoint, is_(B))
        assert_that(exhausted[0].summary, is_(ConnectivitySummary.partial))
        assert_that(self.sut.connections, has_key(B))
        assert_that(self.sut.connection(B).state, is_(ConnectionState.exhausted))

    def test_connect_resets_exhausted_endpoint(self):
        self.sut.connect_all()
        for _ in range(3):
            self.connector(B).drop()
            self.loop.run_pending()
            self.clock.advance(5)
            self.loop.run_pending()
        assert_that(self.sut.connect(B), is_(True))
        assert_that(self.sut.connection(B).state, is_(ConnectionState.connecting))
        assert_that(self.sut.connection(B).attempts, is_(0))

    def test_reconnect(self):
        self.sut.connect_all()
        self.accept(A)
        first = self.connector(A)
        assert_that(self.sut.reconnect(A), is_(True))
        assert_that(first.closed, is_(True))
        assert_that(self.connector(A), is_(self.factory.created[-1]))
        assert_that(self.sut.connection(A).state, is_(ConnectionState.connecting))

    def test_shutdown_leaves_no_timers(self):
        self.sut.connect_all()
        self.accept(A)
        self.connector(B).drop()
        self.loop.run_pending()
        self.sut.shutdown()
        assert_that(self.loop.pending_timers(), is_(0))
        assert_that(self.monitor.running, is_(False))
        assert_that(self.sut.summary(), is_(ConnectivitySummary.disconnected))
        assert_that(all(c.state == ConnectionState.idle for c in self.sut.connections.values()), is_(True))

    def test_details(self):
        self.sut.connect_all()
        self.accept(A)
        self.receive(A, {'type': 'deviceHeartbeat', 'data': {'deviceId': 'D1', 'tcpConnected': True}})
        details = self.sut.details()
        assert_that(details, has_entries(summary='partial', total=2, connected=1))
        assert_that(details['details'][A], has_entries(state='open', attempts=0))
        assert_that(details['details'][B], has_entries(state='connecting'))
        assert_that(details['deviceHeartbeats']['D1'], has_entries(source=A, status='ONLINE'))

    def test_request_helpers_broadcast(self):
        self.sut.connect_all()
        self.accept(A)
        assert_that(self.sut.request_device_heartbeat(), is_(1))
        assert_that(self.sut.report_package_status('P1', 'sorted', 'SRT_REG_01'), is_(1))
        assert_that(self.connector(A).sent_types(), is_(
            ['requestInitialData', 'requestDeviceHeartbeat', 'packageStatus']))
        assert_that(self.connector(A).sent[-1]['data'], has_entries(packageId='P1', status='sorted'))
