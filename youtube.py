import logging
import os
import re
import tempfile
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from dataclasses import dataclass

import requests
import yt_dlp
from mutagen import MutagenError
from mutagen.easyid3 import EasyID3
from mutagen.id3 import APIC, ID3, ID3NoHeaderError
from yt_dlp.utils import DownloadError

from errors import ConversionError, ValidationError

logger = logging.getLogger(__name__)

YOUTUBE_URL_RE = re.compile(
    r'^(https?://)?(www\.|m\.|music\.)?'
    r'(youtube\.com/(watch\?.*v=|embed/|shorts/|v/)|youtu\.be/)'
    r'[\w-]{11}'
)

SUPPORTED_FORMATS = ('mp3', 'm4a', 'wav', 'ogg', 'aac')


@dataclass
class ConvertedAudio:
    title: str
    duration: int
    data: bytes
    extension: str
    artist: str = 'YouTube'

    @property
    def filename(self):
        return f"{sanitize_title(self.title)}.{self.extension}"

    @property
    def mimetype(self):
        return f"audio/{self.extension}"


def sanitize_title(title):
    """Lower-case the title and replace anything not alphanumeric with _."""
    return re.sub(r'[^a-z0-9]', '_', title.lower())


def is_youtube_url(url):
    return bool(url and YOUTUBE_URL_RE.match(url.strip()))


def uploader(info):
    return info.get('artist') or info.get('channel') or info.get('uploader') or 'YouTube'


def embed_tags(mp3_path, title, artist, thumbnail_url=None):
    """Write title/artist and, if it can be fetched, the cover art into the mp3."""
    try:
        audio = EasyID3(mp3_path)
    except ID3NoHeaderError:
        audio = EasyID3()
    audio['title'] = title
    audio['artist'] = artist
    audio['album'] = 'YouTube'
    audio.save(mp3_path)

    if not thumbnail_url:
        return
    try:
        img_data = requests.get(thumbnail_url, timeout=10).content
        audio = ID3(mp3_path)
        audio['APIC'] = APIC(
            encoding=3,
            mime='image/jpeg',
            type=3,
            desc='Cover',
            data=img_data
        )
        audio.save(mp3_path)
    except (requests.RequestException, MutagenError) as e:
        logger.warning(f"Could not embed thumbnail for {title}: {e}")


def friendly_error(message):
    text = message.lower()
    if 'private' in text or 'restricted' in text or 'sign in' in text:
        return 'This YouTube video is private or restricted.'
    if 'unavailable' in text:
        return 'This YouTube video is unavailable.'
    return f"YouTube conversion failed: {message}"


class YouTubeConverter:
    """
    Downloads the audio track of a YouTube video with yt-dlp and converts it
    with ffmpeg. Info lookup and the whole conversion each have a timeout.
    """

    def __init__(self, info_timeout=10, convert_timeout=60):
        self.info_timeout = info_timeout
        self.convert_timeout = convert_timeout
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='yt-convert')

    def _run(self, fn, timeout, what):
        future = self._executor.submit(fn)
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            if not future.cancel():
                logger.warning(f"YouTube {what} timed out; worker left to finish in the background")
            raise ConversionError(
                f"YouTube {what} timed out. Please try again.", status_code=504)
        except DownloadError as e:
            raise ConversionError(friendly_error(str(e)))

    def fetch_info(self, url):
        ydl_opts = {'quiet': True, 'no_warnings': True, 'noplaylist': True}

        def extract():
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                return ydl.extract_info(url, download=False)

        return self._run(extract, self.info_timeout, 'video info request')

    def convert(self, url, fmt='mp3', quality='192'):
        if not is_youtube_url(url):
            raise ValidationError('Invalid YouTube URL')
        if fmt not in SUPPORTED_FORMATS:
            raise ValidationError(f"Unsupported format: {fmt}")

        info = self.fetch_info(url)
        title = info.get('title') or 'youtube-audio'
        logger.info(f"📺 Video title: {title}")
        logger.info(f"🔧 Processing format: {fmt} quality: {quality}")

        # temp dir is created and removed on the worker thread
        def download():
            with tempfile.TemporaryDirectory(prefix='blueme-yt-') as workdir:
                ydl_opts = {
                    'format': 'bestaudio/best',
                    'noplaylist': True,
                    'quiet': True,
                    'no_warnings': True,
                    'outtmpl': os.path.join(workdir, 'audio.%(ext)s'),
                    'postprocessors': [{
                        'key': 'FFmpegExtractAudio',
                        'preferredcodec': fmt,
                        'preferredquality': str(quality),
                    }],
                }
                with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                    ydl.download([url])

                audio_path = os.path.join(workdir, f"audio.{fmt}")
                if not os.path.exists(audio_path):
                    raise ConversionError('Audio processing failed')
                if fmt == 'mp3':
                    embed_tags(audio_path, title, uploader(info), info.get('thumbnail'))
                with open(audio_path, 'rb') as f:
                    return f.read()

        data = self._run(download, self.convert_timeout, 'conversion')

        logger.info(f"✅ Audio converted, size: {len(data)}")
        return ConvertedAudio(
            title=title,
            duration=int(info.get('duration') or 0),
            data=data,
            extension=fmt,
            artist=uploader(info),
        )

    def shutdown(self, wait=False):
        self._executor.shutdown(wait=wait)
