"""
Socket.IO relay for synced playback.

Participants join rooms; transport-control events are fanned out to every
other member of the sender's room. Device changes are broadcast to everyone.
Errors only ever go back to the participant that caused them.
"""
import logging
import threading
from collections import defaultdict
from functools import wraps

from flask import request
from flask_socketio import emit, join_room, leave_room

from errors import BlueMeError, ValidationError

logger = logging.getLogger(__name__)


class RoomMembership:
    """Rooms each participant (socket sid) has joined."""

    def __init__(self):
        self._rooms = defaultdict(set)
        self._lock = threading.Lock()

    def add(self, sid, room_id):
        with self._lock:
            self._rooms[sid].add(room_id)

    def remove(self, sid, room_id):
        with self._lock:
            self._rooms[sid].discard(room_id)

    def rooms_of(self, sid):
        with self._lock:
            return set(self._rooms.get(sid, ()))

    def forget(self, sid):
        with self._lock:
            return self._rooms.pop(sid, set())


def _room_id(data):
    # join-sync-room may send the bare room id instead of an object
    if isinstance(data, str):
        return data or None
    if isinstance(data, dict):
        return data.get('roomId')
    return None


def _payload(data):
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Invalid payload')
    return data


def errors_to_caller(error_event):
    """Send any failure inside the handler back to the sender only, as ``error_event``."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except BlueMeError as e:
                emit(error_event, {'error': e.message})
            except Exception as e:
                logger.exception(f"{error_event} for {request.sid}")
                emit(error_event, {'error': str(e)})
        return wrapper
    return decorator


def register_sync_handlers(socketio, registry):
    """Attach the relay's event handlers to ``socketio``."""
    membership = RoomMembership()

    def device_status():
        return {'devices': registry.snapshot()}

    @socketio.on('connect')
    def handle_connect(auth=None):
        logger.info(f"🎧 New client connected: {request.sid}")

    @socketio.on('disconnect')
    def handle_disconnect(reason=None):
        sid = request.sid
        rooms = membership.forget(sid)
        for room_id in rooms:
            socketio.emit('user-left', {'userId': sid}, to=room_id, skip_sid=sid)
        logger.info(f"🎧 Client disconnected: {sid} (left {len(rooms)} rooms)")

    @socketio.on('join-sync-room')
    def handle_join(data):
        room_id = _room_id(data)
        if not room_id:
            logger.warning(f"join-sync-room without roomId from {request.sid}")
            return
        join_room(room_id)
        membership.add(request.sid, room_id)
        logger.info(f"🎵 Client {request.sid} joined sync room: {room_id}")
        emit('user-joined', {'userId': request.sid}, to=room_id, include_self=False)
        emit('device-status-update', device_status())

    @socketio.on('leave-sync-room')
    def handle_leave(data):
        room_id = _room_id(data)
        if not room_id or room_id not in membership.rooms_of(request.sid):
            return
        leave_room(room_id)
        membership.remove(request.sid, room_id)
        emit('user-left', {'userId': request.sid}, to=room_id)
        logger.info(f"Client {request.sid} left sync room: {room_id}")

    @socketio.on('discover-devices')
    @errors_to_caller('discovery-error')
    def handle_discover(data=None):
        emit('devices-discovered', {'devices': registry.discover()})

    @socketio.on('connect-device')
    @errors_to_caller('connection-error')
    def handle_connect_device(data=None):
        data = _payload(data)
        device_id = data.get('deviceId')
        if not device_id:
            raise ValidationError('deviceId is required')
        device = registry.connect(device_id, data.get('deviceName') or device_id)
        emit('device-connected', device.to_dict())
        emit('device-status-update', device_status(), broadcast=True, include_self=False)

    @socketio.on('disconnect-device')
    @errors_to_caller('disconnection-error')
    def handle_disconnect_device(data=None):
        device = registry.disconnect(_payload(data).get('deviceId'))
        emit('device-disconnected', device.to_dict())
        emit('device-status-update', device_status(), broadcast=True, include_self=False)

    @socketio.on('play-music')
    @errors_to_caller('sync-error')
    def handle_play(data=None):
        data = _payload(data)
        room_id = data.get('roomId')
        if not room_id:
            logger.warning(f"play-music without roomId from {request.sid}")
            return
        sync_results = registry.sync_audio(data, request.sid)

        emit('music-play', {
            'trackId': data.get('trackId'),
            'timestamp': data.get('timestamp'),
            'userId': request.sid,
            'syncResults': sync_results
        }, to=room_id, include_self=False)

        emit('sync-status', {
            'status': 'synced',
            'devices': sync_results,
            'message': f"Music synced to {len(sync_results)} devices"
        })

    def relay(event, outbound, fields):
        @socketio.on(event)
        def handler(data=None):
            room_id = data.get('roomId') if isinstance(data, dict) else None
            if not room_id:
                logger.warning(f"{event} without roomId from {request.sid}")
                return
            payload = {key: data.get(key) for key in fields}
            payload['userId'] = request.sid
            emit(outbound, payload, to=room_id, include_self=False)

    relay('pause-music', 'music-pause', ('trackId',))
    relay('seek-music', 'music-seek', ('trackId', 'position'))
    relay('volume-change', 'volume-updated', ('volume',))

    @socketio.on('get-device-status')
    def handle_device_status(data=None):
        emit('device-status-update', device_status())

    return membership
