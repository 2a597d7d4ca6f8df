from flask import Flask, current_app, request, send_from_directory, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO
from dotenv import load_dotenv
from mutagen import File as MutagenFile
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
import io
import logging
import os

from auth import auth_bp
from devices import DeviceRegistry, SimulatedTransport
from errors import BlueMeError, ValidationError
from playlists import playlists_bp
from storage import AudioStorage, create_store, utcnow
from sync_relay import register_sync_handlers
from youtube import YouTubeConverter

load_dotenv()

logger = logging.getLogger(__name__)

VERSION = '2.0.0'
MAX_UPLOAD_BYTES = 50 * 1024 * 1024  # 50MB


def default_config():
    """Settings read from the environment (or a .env file)."""
    return {
        'SECRET_KEY': os.environ.get('SECRET_KEY', 'blueme-dev-secret'),
        'JWT_SECRET': os.environ.get('JWT_SECRET', 'blueme-super-secret-key-change-in-production'),
        'JWT_EXPIRY_DAYS': int(os.environ.get('JWT_EXPIRY_DAYS', 30)),
        'BCRYPT_ROUNDS': int(os.environ.get('BCRYPT_ROUNDS', 12)),
        'UPLOAD_FOLDER': os.environ.get('UPLOAD_FOLDER', 'uploads'),
        'MAX_CONTENT_LENGTH': MAX_UPLOAD_BYTES,
        'SUPABASE_URL': os.environ.get('SUPABASE_URL'),
        'SUPABASE_ANON_KEY': os.environ.get('SUPABASE_ANON_KEY'),
        'DEVICE_CONNECT_DELAY': float(os.environ.get('DEVICE_CONNECT_DELAY', 1.0)),
        'DEVICE_SYNC_DELAY': float(os.environ.get('DEVICE_SYNC_DELAY', 0.1)),
        'YOUTUBE_INFO_TIMEOUT': float(os.environ.get('YOUTUBE_INFO_TIMEOUT', 10)),
        'YOUTUBE_CONVERT_TIMEOUT': float(os.environ.get('YOUTUBE_CONVERT_TIMEOUT', 60)),
    }


def services():
    return current_app.extensions['blueme']


def read_audio_tags(data, filename):
    """Best-effort title/artist/album/duration from the file's tags."""
    buf = io.BytesIO(data)
    buf.name = filename
    try:
        audio = MutagenFile(buf, easy=True)
    except Exception as e:
        logger.debug(f"Could not read tags from {filename}: {e}")
        return {}
    if audio is None:
        return {}

    def first(key):
        values = audio.tags.get(key) if audio.tags else None
        return values[0] if values else None

    length = getattr(audio.info, 'length', None)
    return {
        'title': first('title'),
        'artist': first('artist'),
        'album': first('album'),
        'duration': int(length) if length else None,
    }


# ========================================
# APP FACTORY
# ========================================

def create_app(config=None, registry=None, converter=None):
    app = Flask(__name__)
    app.config.update(default_config())
    if config:
        app.config.update(config)

    CORS(app, supports_credentials=True)

    store, supabase_client = create_store(app.config)
    if registry is None:
        registry = DeviceRegistry(SimulatedTransport(
            connect_delay=app.config['DEVICE_CONNECT_DELAY'],
            sync_delay=app.config['DEVICE_SYNC_DELAY']))
    if converter is None:
        converter = YouTubeConverter(
            info_timeout=app.config['YOUTUBE_INFO_TIMEOUT'],
            convert_timeout=app.config['YOUTUBE_CONVERT_TIMEOUT'])
    audio_storage = AudioStorage(store, app.config['UPLOAD_FOLDER'], supabase_client)
    audio_storage.initialize()

    app.extensions['blueme'] = {
        'registry': registry,
        'store': store,
        'audio': audio_storage,
        'converter': converter,
    }

    # Events from one connection are handled one at a time, in order.
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading',
                        async_handlers=False)
    app.extensions['blueme']['membership'] = register_sync_handlers(socketio, registry)

    app.register_blueprint(auth_bp)
    app.register_blueprint(playlists_bp)
    register_routes(app)
    register_error_handlers(app)

    logger.info("🔵 Bluetooth manager initialized")
    return app


def shutdown(app):
    """Release everything ``create_app`` set up."""
    blueme = app.extensions['blueme']
    blueme['registry'].clear()
    blueme['converter'].shutdown()
    logger.info("BlueMe server stopped, device registry cleared")


# ========================================
# HTTP ROUTES
# ========================================

def register_routes(app):

    @app.route('/')
    def index():
        return jsonify({
            'status': 'ok',
            'message': 'BlueMe Server is running',
            'timestamp': utcnow(),
            'version': VERSION
        })

    @app.route('/api/health')
    def health():
        return jsonify({
            'status': 'healthy',
            'message': 'BlueMe Server Running',
            'timestamp': utcnow(),
            'version': VERSION
        })

    # Bluetooth device management mirrors the socket events
    @app.route('/api/devices')
    def list_devices():
        devices = services()['registry'].snapshot()
        return jsonify({'success': True, 'devices': devices, 'count': len(devices)})

    @app.route('/api/devices/connect', methods=['POST'])
    def connect_device():
        data = request.get_json(silent=True) or {}
        device_id = data.get('deviceId')
        if not device_id:
            raise ValidationError('deviceId is required')
        device = services()['registry'].connect(device_id, data.get('deviceName') or device_id)
        return jsonify({
            'success': True,
            'device': device.to_dict(),
            'message': f"Successfully connected to {device.name}"
        })

    @app.route('/api/devices/<device_id>', methods=['DELETE'])
    def disconnect_device(device_id):
        device = services()['registry'].disconnect(device_id)
        return jsonify({
            'success': True,
            'device': device.to_dict(),
            'message': f"Successfully disconnected from {device.name}"
        })

    @app.route('/api/upload', methods=['POST'])
    def upload_audio():
        audio = request.files.get('audio')
        if audio is None or not audio.filename:
            raise ValidationError('No audio file provided')
        if not (audio.mimetype or '').startswith('audio/'):
            raise ValidationError('Only audio files are allowed!')

        data = audio.read()
        metadata = read_audio_tags(data, audio.filename)
        metadata['userId'] = request.form.get('userId')
        file_info = services()['audio'].save(data, audio.filename, audio.mimetype, metadata)

        where = 'cloud storage' if file_info['storage'] == 'supabase' else 'local storage'
        return jsonify({
            'success': True,
            'message': f'Audio file uploaded to {where} successfully',
            'file': file_info
        })

    @app.route('/api/convert-youtube', methods=['POST'])
    def convert_youtube():
        data = request.get_json(silent=True) or {}
        url = (data.get('url') or '').strip()
        fmt = data.get('format', 'mp3')
        quality = str(data.get('quality', '192'))
        if not url:
            raise ValidationError('YouTube URL is required')

        logger.info(f"🎵 Converting YouTube URL: {url}")
        converted = services()['converter'].convert(url, fmt, quality)
        file_info = services()['audio'].save(converted.data, converted.filename, converted.mimetype, {
            'title': converted.title,
            'artist': converted.artist,
            'duration': converted.duration,
            'userId': data.get('userId'),
        })
        file_info.update({'originalName': converted.title, 'format': fmt, 'quality': quality})

        return jsonify({
            'success': True,
            'message': 'YouTube audio converted and stored successfully',
            'file': file_info
        })

    @app.route('/api/files')
    def list_files():
        return jsonify({'files': services()['audio'].list_local()})

    @app.route('/uploads/<path:filename>')
    def uploaded_file(filename):
        return send_from_directory(os.path.abspath(app.config['UPLOAD_FOLDER']), filename)


def register_error_handlers(app):

    @app.errorhandler(BlueMeError)
    def handle_blueme_error(e):
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        return jsonify({'success': False, 'error': 'File too large (50MB max)'}), 413

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'success': False, 'error': 'Route not found'}), 404

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception(f"Server error on {request.method} {request.path}")
        return jsonify({'success': False, 'error': 'Internal server error'}), 500


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    app = create_app()
    socketio = app.extensions['socketio']
    port = int(os.environ.get('PORT', 3000))
    host = os.environ.get('HOST', '0.0.0.0')

    logger.info(f"🌐 BlueMe Server running on {host}:{port}")
    logger.info("📡 WebSocket server ready for real-time sync")
    try:
        socketio.run(app, host=host, port=port, allow_unsafe_werkzeug=True)
    finally:
        shutdown(app)


if __name__ == '__main__':
    main()
