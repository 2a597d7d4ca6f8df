"""Tests for the in-memory device registry."""

import pytest

from devices import DISCOVERABLE_DEVICES, DeviceRegistry, DeviceTransport, SimulatedTransport
from errors import DeviceNotFound, TransportFailure


class FlakyTransport(DeviceTransport):
    """Fails to stream to the ids in ``broken``."""

    def __init__(self, broken=()):
        self.broken = set(broken)
        self.streamed = []

    def connect(self, device_id):
        pass

    def disconnect(self, device_id):
        pass

    def stream(self, device, payload, session_id):
        if device.id in self.broken:
            raise TransportFailure(f"{device.name} out of range")
        self.streamed.append((device.id, session_id))
        return 25


class TestDiscover:
    def test_returns_fixed_catalog(self, registry):
        devices = registry.discover()
        assert [d['id'] for d in devices] == ['device-1', 'device-2', 'device-3', 'device-4']
        assert devices[0]['name'] == 'AirPods Pro'

    def test_catalog_copies_are_independent(self, registry):
        registry.discover()[0]['name'] = 'changed'
        assert DISCOVERABLE_DEVICES[0]['name'] == 'AirPods Pro'


class TestConnect:
    def test_connect_lists_device(self, registry):
        registry.connect('d1', 'AirPods')
        devices = registry.snapshot()
        assert len(devices) == 1
        assert devices[0]['id'] == 'd1'
        assert devices[0]['name'] == 'AirPods'
        assert devices[0]['connected'] is True
        assert devices[0]['audioSupport'] is True
        assert devices[0]['syncCapable'] is True

    def test_battery_in_range(self, registry):
        for i in range(20):
            device = registry.connect(f'd{i}', 'Speaker')
            assert 1 <= device.battery <= 100

    def test_duplicate_id_overwrites(self, registry):
        registry.connect('d1', 'Old name')
        registry.connect('d1', 'New name')
        devices = registry.list()
        assert len(devices) == 1
        assert devices[0].name == 'New name'

    def test_list_keeps_insertion_order(self, registry):
        for device_id in ('c', 'a', 'b'):
            registry.connect(device_id, device_id.upper())
        assert [d.id for d in registry.list()] == ['c', 'a', 'b']

    def test_connected_at_is_iso_timestamp(self, registry):
        device = registry.connect('d1', 'AirPods')
        assert device.to_dict()['connectedAt'].startswith(str(device.connected_at.year))


class TestDisconnect:
    def test_disconnect_removes_device(self, registry):
        registry.connect('d1', 'AirPods')
        device = registry.disconnect('d1')
        assert device.connected is False
        assert registry.list() == []
        assert registry.get('d1') is None

    def test_unknown_device_raises(self, registry):
        registry.connect('d1', 'AirPods')
        with pytest.raises(DeviceNotFound):
            registry.disconnect('unknown')
        assert [d.id for d in registry.list()] == ['d1']

    def test_disconnect_twice(self, registry):
        registry.connect('d1', 'AirPods')
        registry.disconnect('d1')
        with pytest.raises(DeviceNotFound):
            registry.disconnect('d1')


class TestSyncAudio:
    def test_one_result_per_device(self, registry):
        for i in range(3):
            registry.connect(f'd{i}', f'Device {i}')
        results = registry.sync_audio({'trackId': 't1'}, 'session-1')
        assert len(results) == len(registry.list()) == 3
        for r in results:
            assert r['status'] == 'synced'
            assert 10 <= r['latency'] < 60

    def test_no_devices(self, registry):
        assert registry.sync_audio({}, 'session-1') == []

    def test_failure_is_isolated_per_device(self):
        transport = FlakyTransport(broken={'d2'})
        registry = DeviceRegistry(transport)
        for device_id in ('d1', 'd2', 'd3'):
            registry.connect(device_id, device_id)
        results = {r['deviceId']: r for r in registry.sync_audio({}, 'sess')}
        assert results['d2']['status'] == 'failed'
        assert 'out of range' in results['d2']['error']
        assert results['d1']['status'] == 'synced'
        assert results['d3']['status'] == 'synced'
        assert [d for d, _ in transport.streamed] == ['d1', 'd3']

    def test_backend_os_error_is_isolated_per_device(self):
        class DroppingTransport(FlakyTransport):
            def stream(self, device, payload, session_id):
                if device.id in self.broken:
                    raise OSError('bluetooth adapter gone')
                return super().stream(device, payload, session_id)

        registry = DeviceRegistry(DroppingTransport(broken={'d2'}))
        for device_id in ('d1', 'd2', 'd3'):
            registry.connect(device_id, device_id)
        results = registry.sync_audio({}, 'sess')
        assert [r['status'] for r in results] == ['synced', 'failed', 'synced']
        assert results[1]['error'] == 'bluetooth adapter gone'


def test_clear(registry):
    registry.connect('d1', 'AirPods')
    registry.connect('d2', 'Buds')
    registry.clear()
    assert len(registry) == 0


def test_default_transport_is_simulated():
    assert isinstance(DeviceRegistry().transport, SimulatedTransport)
