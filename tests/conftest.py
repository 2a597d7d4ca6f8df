"""pytest fixtures for the BlueMe server."""

import pytest

from app import create_app, shutdown
from devices import DeviceRegistry, SimulatedTransport
from youtube import ConvertedAudio


class StubConverter:
    """Stands in for yt-dlp so tests never touch the network."""

    def __init__(self):
        self.calls = []
        self.error = None

    def convert(self, url, fmt='mp3', quality='192'):
        self.calls.append((url, fmt, quality))
        if self.error is not None:
            raise self.error
        return ConvertedAudio(title='Never Gonna Give You Up', duration=213,
                              data=b'ID3fake-audio', extension=fmt)

    def shutdown(self):
        pass


@pytest.fixture()
def registry():
    return DeviceRegistry(SimulatedTransport(connect_delay=0, sync_delay=0))


@pytest.fixture()
def converter():
    return StubConverter()


@pytest.fixture()
def app(tmp_path, registry, converter):
    app = create_app({
        'TESTING': True,
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'SUPABASE_URL': None,
        'SUPABASE_ANON_KEY': None,
        'JWT_SECRET': 'test-secret',
        'BCRYPT_ROUNDS': 4,
    }, registry=registry, converter=converter)
    yield app
    shutdown(app)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def socketio(app):
    return app.extensions['socketio']


@pytest.fixture()
def connect_socket(app, socketio):
    """Factory for Socket.IO test clients; all are disconnected at teardown."""
    clients = []

    def _connect():
        c = socketio.test_client(app)
        # server-side session id, which the relay reports as userId
        c.sid = socketio.server.manager.sid_from_eio_sid(c.eio_sid, '/')
        clients.append(c)
        return c

    yield _connect
    for c in clients:
        if c.is_connected():
            c.disconnect()


def events(socket_client, name=None):
    """Received (name, payload) pairs, optionally filtered by event name."""
    received = [(r['name'], r['args'][0] if r['args'] else None)
                for r in socket_client.get_received()]
    if name is None:
        return received
    return [payload for n, payload in received if n == name]
