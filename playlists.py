import logging

from flask import Blueprint, current_app, jsonify, request

from errors import NotFound, ValidationError
from storage import TABLES, utcnow

logger = logging.getLogger(__name__)

playlists_bp = Blueprint('playlists', __name__, url_prefix='/api/playlists')

FREE_PLAYLIST_MAX_SONGS = 8


def _store():
    return current_app.extensions['blueme']['store']


def _with_items(playlist):
    items = _store().find(TABLES['PLAYLIST_ITEMS'], order_by='position',
                          playlist_id=playlist['id'])
    return dict(playlist, playlist_items=items)


def _get_playlist(playlist_id):
    playlist = _store().get(TABLES['PLAYLISTS'], playlist_id)
    if playlist is None:
        raise NotFound('Playlist not found')
    return playlist


@playlists_bp.route('', methods=['GET'])
def list_playlists():
    user_id = request.args.get('userId')
    filters = {'user_id': user_id} if user_id else {}
    playlists = _store().find(TABLES['PLAYLISTS'], order_by='created_at', **filters)
    return jsonify({
        'success': True,
        'playlists': [_with_items(p) for p in playlists]
    })


@playlists_bp.route('', methods=['POST'])
def create_playlist():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Playlist name is required')

    now = utcnow()
    playlist = _store().insert(TABLES['PLAYLISTS'], {
        'name': name,
        'description': data.get('description') or '',
        'user_id': data.get('userId') or 'guest',
        'is_public': bool(data.get('isPublic', False)),
        'is_premium': False,
        'max_songs': FREE_PLAYLIST_MAX_SONGS,
        'created_at': now,
        'updated_at': now,
    })
    logger.info(f"✅ Playlist created: {playlist['name']}")
    return jsonify({'success': True, 'playlist': _with_items(playlist)})


@playlists_bp.route('/<playlist_id>/items', methods=['POST'])
def add_item(playlist_id):
    data = request.get_json(silent=True) or {}
    audio_file_id = data.get('audioFileId')
    if not audio_file_id:
        raise ValidationError('Audio file ID is required')

    store = _store()
    playlist = _get_playlist(playlist_id)
    items = store.find(TABLES['PLAYLIST_ITEMS'], playlist_id=playlist_id)
    if len(items) >= playlist.get('max_songs', FREE_PLAYLIST_MAX_SONGS):
        raise ValidationError(f"Playlist is full ({playlist['max_songs']} songs max)")

    position = data.get('position')
    if position is None:
        position = len(items)
    item = store.insert(TABLES['PLAYLIST_ITEMS'], {
        'playlist_id': playlist_id,
        'audio_file_id': audio_file_id,
        'position': position,
        'added_at': utcnow(),
    })
    store.update(TABLES['PLAYLISTS'], playlist_id, {'updated_at': utcnow()})
    return jsonify({'success': True, 'playlistItem': item})


@playlists_bp.route('/<playlist_id>/items/<item_id>', methods=['DELETE'])
def remove_item(playlist_id, item_id):
    store = _store()
    _get_playlist(playlist_id)
    item = store.get(TABLES['PLAYLIST_ITEMS'], item_id)
    if item is None or item.get('playlist_id') != playlist_id:
        raise NotFound('Playlist item not found')

    store.delete(TABLES['PLAYLIST_ITEMS'], item_id)
    store.update(TABLES['PLAYLISTS'], playlist_id, {'updated_at': utcnow()})
    return jsonify({'success': True, 'message': 'Track removed from playlist'})
