import logging
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from errors import DeviceNotFound

logger = logging.getLogger(__name__)

# ========================================
# DEVICE CATALOG
# ========================================
# No real scanning happens; discovery always returns these.
DISCOVERABLE_DEVICES = [
    {'id': 'device-1', 'name': 'AirPods Pro', 'type': 'headphones', 'battery': 85, 'audioSupport': True},
    {'id': 'device-2', 'name': 'Sony WH-1000XM4', 'type': 'headphones', 'battery': 92, 'audioSupport': True},
    {'id': 'device-3', 'name': 'JBL Flip 5', 'type': 'speaker', 'battery': 78, 'audioSupport': True},
    {'id': 'device-4', 'name': 'Galaxy Buds Pro', 'type': 'earbuds', 'battery': 67, 'audioSupport': True},
]


@dataclass
class Device:
    id: str
    name: str
    battery: int
    connected: bool = True
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    audio_support: bool = True
    sync_capable: bool = True

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'connected': self.connected,
            'connectedAt': self.connected_at.isoformat(),
            'battery': self.battery,
            'audioSupport': self.audio_support,
            'syncCapable': self.sync_capable,
        }


class DeviceTransport:
    """
    Link between the registry and an actual audio endpoint.
    Swap in a real Bluetooth backend by implementing these three calls.
    """

    def connect(self, device_id):
        raise NotImplementedError

    def disconnect(self, device_id):
        raise NotImplementedError

    def stream(self, device, payload, session_id):
        """
        Push audio to a device and return the measured latency in ms.
        Raise ``TransportFailure`` (or let the backend's own error out) when the
        device cannot be reached; the registry records it against that device only.
        """
        raise NotImplementedError


class SimulatedTransport(DeviceTransport):
    """Fake transport: sleeps instead of talking to hardware."""

    def __init__(self, connect_delay=1.0, sync_delay=0.1):
        self.connect_delay = connect_delay
        self.sync_delay = sync_delay

    def connect(self, device_id):
        if self.connect_delay:
            time.sleep(self.connect_delay)

    def disconnect(self, device_id):
        pass

    def stream(self, device, payload, session_id):
        if self.sync_delay:
            time.sleep(self.sync_delay)
        return random.randint(10, 59)


class DeviceRegistry:
    """
    In-memory table of connected devices.

    One instance is shared by the HTTP routes and the sync relay, and the
    server runs handlers on threads, so every mutation holds ``_lock``.
    Reconnecting an id that is already present replaces the old record.
    """

    def __init__(self, transport=None):
        self.transport = transport or SimulatedTransport()
        self._devices = {}
        self._lock = threading.Lock()

    def discover(self):
        return [dict(d) for d in DISCOVERABLE_DEVICES]

    def connect(self, device_id, name):
        self.transport.connect(device_id)
        device = Device(id=device_id, name=name, battery=random.randint(1, 100))
        with self._lock:
            if device_id in self._devices:
                logger.info(f"Replacing existing connection for {device_id}")
            self._devices[device_id] = device
        logger.info(f"🔵 Device connected: {name} ({device_id}), battery {device.battery}%")
        return device

    def disconnect(self, device_id):
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise DeviceNotFound(device_id)
            device.connected = False
            del self._devices[device_id]
        self.transport.disconnect(device_id)
        logger.info(f"⚪ Device disconnected: {device.name} ({device_id})")
        return device

    def list(self):
        with self._lock:
            return list(self._devices.values())

    def get(self, device_id):
        with self._lock:
            return self._devices.get(device_id)

    def sync_audio(self, payload, session_id):
        """Stream to every connected device; one result per device."""
        results = []
        for device in self.list():
            try:
                latency = self.transport.stream(device, payload, session_id)
                results.append({
                    'deviceId': device.id,
                    'deviceName': device.name,
                    'status': 'synced',
                    'latency': latency
                })
            except Exception as e:
                logger.warning(f"Sync to {device.id} failed: {e}")
                results.append({
                    'deviceId': device.id,
                    'deviceName': device.name,
                    'status': 'failed',
                    'error': str(e)
                })
        return results

    def snapshot(self):
        return [d.to_dict() for d in self.list()]

    def clear(self):
        with self._lock:
            self._devices.clear()

    def __len__(self):
        with self._lock:
            return len(self._devices)
