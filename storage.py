"""
Record and file storage.

``MemoryStore`` keeps tables in process memory and is what runs when no
hosted database is configured. ``SupabaseStore`` talks to Supabase through
supabase-py. Both expose the same CRUD calls keyed by record id.
"""
import logging
import os
import threading
import time
import uuid
from datetime import datetime, timezone

from werkzeug.utils import secure_filename

from errors import StorageError

logger = logging.getLogger(__name__)

TABLES = {
    'AUDIO_FILES': 'audio_files',
    'USERS': 'users',
    'PLAYLISTS': 'playlists',
    'PLAYLIST_ITEMS': 'playlist_items',
}

STORAGE_BUCKETS = {
    'AUDIO': 'audio-files',
    'CONVERTED': 'converted-audio',
    'TEMP': 'temp-files',
}

AUDIO_EXTENSIONS = ('.mp3', '.wav', '.ogg', '.aac', '.m4a')
MAX_BUCKET_FILE_SIZE = 50 * 1024 * 1024


def utcnow():
    return datetime.now(timezone.utc).isoformat()


class RecordStore:
    def insert(self, table, record):
        raise NotImplementedError

    def get(self, table, record_id):
        raise NotImplementedError

    def find(self, table, order_by=None, descending=False, **filters):
        raise NotImplementedError

    def find_one(self, table, **filters):
        rows = self.find(table, **filters)
        return rows[0] if rows else None

    def update(self, table, record_id, changes):
        raise NotImplementedError

    def delete(self, table, record_id):
        raise NotImplementedError


class MemoryStore(RecordStore):
    def __init__(self):
        self._tables = {}
        self._lock = threading.Lock()

    def _table(self, table):
        return self._tables.setdefault(table, {})

    def insert(self, table, record):
        row = dict(record)
        row.setdefault('id', str(uuid.uuid4()))
        with self._lock:
            self._table(table)[row['id']] = row
        return dict(row)

    def get(self, table, record_id):
        with self._lock:
            row = self._table(table).get(record_id)
        return dict(row) if row else None

    def find(self, table, order_by=None, descending=False, **filters):
        with self._lock:
            rows = [dict(r) for r in self._table(table).values()
                    if all(r.get(k) == v for k, v in filters.items())]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        return rows

    def update(self, table, record_id, changes):
        with self._lock:
            row = self._table(table).get(record_id)
            if row is None:
                return None
            row.update(changes)
            return dict(row)

    def delete(self, table, record_id):
        with self._lock:
            return self._table(table).pop(record_id, None) is not None


class SupabaseStore(RecordStore):
    def __init__(self, url, key, client=None):
        if client is None:
            from supabase import create_client
            client = create_client(url, key)
        self.client = client

    def _run(self, query, action):
        try:
            return query.execute().data or []
        except Exception as e:
            logger.error(f"❌ Supabase {action} failed: {e}")
            raise StorageError(f"Database {action} failed") from e

    def insert(self, table, record):
        rows = self._run(self.client.table(table).insert(record), 'insert')
        return rows[0] if rows else dict(record)

    def get(self, table, record_id):
        rows = self._run(self.client.table(table).select('*').eq('id', record_id), 'select')
        return rows[0] if rows else None

    def find(self, table, order_by=None, descending=False, **filters):
        query = self.client.table(table).select('*')
        for column, value in filters.items():
            query = query.eq(column, value)
        if order_by:
            query = query.order(order_by, desc=descending)
        return self._run(query, 'select')

    def update(self, table, record_id, changes):
        rows = self._run(self.client.table(table).update(changes).eq('id', record_id), 'update')
        return rows[0] if rows else None

    def delete(self, table, record_id):
        rows = self._run(self.client.table(table).delete().eq('id', record_id), 'delete')
        return bool(rows)


class AudioStorage:
    """
    Saves audio bytes and records them in ``audio_files``.

    With a Supabase client the bytes go to the ``audio-files`` bucket; if the
    bucket upload fails (or there is no client) they are written to the
    local upload folder instead.
    """

    def __init__(self, store, upload_folder, supabase_client=None):
        self.store = store
        self.upload_folder = upload_folder
        self.supabase = supabase_client
        os.makedirs(upload_folder, exist_ok=True)

    def initialize(self):
        """Create any missing storage buckets."""
        if self.supabase is None:
            return
        try:
            existing = {bucket.name for bucket in self.supabase.storage.list_buckets()}
            for bucket in STORAGE_BUCKETS.values():
                if bucket not in existing:
                    self.supabase.storage.create_bucket(bucket, options={
                        'public': False,
                        'allowed_mime_types': ['audio/*'],
                        'file_size_limit': MAX_BUCKET_FILE_SIZE,
                    })
                    logger.info(f"✅ Created storage bucket: {bucket}")
        except Exception as e:
            logger.error(f"❌ Error initializing storage: {e}")

    def save(self, data, original_name, mimetype, metadata=None):
        metadata = metadata or {}
        if self.supabase is not None:
            try:
                return self._save_to_bucket(data, original_name, mimetype, metadata)
            except Exception as e:
                logger.error(f"Supabase upload error, falling back to local storage: {e}")
        return self._save_locally(data, original_name, mimetype, metadata)

    def _record(self, filename, original_name, path, size, mimetype, url, metadata, location):
        row = self.store.insert(TABLES['AUDIO_FILES'], {
            'file_name': filename,
            'original_name': original_name,
            'file_path': path,
            'file_size': size,
            'mime_type': mimetype,
            'public_url': url,
            'user_id': metadata.get('userId'),
            'duration': metadata.get('duration'),
            'artist': metadata.get('artist'),
            'title': metadata.get('title'),
            'album': metadata.get('album'),
            'uploaded_at': utcnow(),
        })
        return {
            'id': row['id'],
            'filename': filename,
            'originalName': original_name,
            'size': size,
            'mimetype': mimetype,
            'url': url,
            'duration': metadata.get('duration'),
            'artist': metadata.get('artist'),
            'title': metadata.get('title'),
            'album': metadata.get('album'),
            'uploadTime': row['uploaded_at'],
            'storage': location,
        }

    def _save_to_bucket(self, data, original_name, mimetype, metadata):
        filename = f"{int(time.time() * 1000)}-{secure_filename(original_name)}"
        path = f"{metadata.get('userId') or 'anonymous'}/{filename}"
        bucket = self.supabase.storage.from_(STORAGE_BUCKETS['AUDIO'])
        bucket.upload(path, data, {'content-type': mimetype})
        url = bucket.get_public_url(path)
        logger.info(f"📁 Audio file uploaded to Supabase: {filename}")
        return self._record(filename, original_name, path, len(data), mimetype, url, metadata, 'supabase')

    def _save_locally(self, data, original_name, mimetype, metadata):
        stem, ext = os.path.splitext(secure_filename(original_name) or 'audio')
        filename = f"{stem}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext.lower()}"
        path = os.path.join(self.upload_folder, filename)
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise StorageError('Upload failed') from e
        logger.info(f"📁 Audio file saved locally: {filename}")
        try:
            return self._record(filename, original_name, path, len(data), mimetype,
                                f"/uploads/{filename}", metadata, 'local')
        except Exception:
            os.remove(path)
            raise

    def list_local(self):
        files = []
        if not os.path.isdir(self.upload_folder):
            return files
        for name in sorted(os.listdir(self.upload_folder)):
            if not name.lower().endswith(AUDIO_EXTENSIONS):
                continue
            stats = os.stat(os.path.join(self.upload_folder, name))
            files.append({
                'filename': name,
                'size': stats.st_size,
                'uploadTime': datetime.fromtimestamp(stats.st_mtime, timezone.utc).isoformat(),
                'path': f"/uploads/{name}",
            })
        return files


def create_store(config):
    """Pick the record store and storage client from ``config``."""
    url = config.get('SUPABASE_URL')
    key = config.get('SUPABASE_ANON_KEY')
    if url and key:
        store = SupabaseStore(url, key)
        logger.info("✅ Supabase storage configured")
        return store, store.client
    logger.warning("⚠️  Supabase not configured - using in-memory records and local files")
    return MemoryStore(), None
