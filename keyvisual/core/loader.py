"""
Image Loader - Decodes key visual sources into RGBA images
Supports: raw bytes, file paths, http(s) and data: URLs, PIL images, numpy arrays
"""

import io
import base64
import asyncio
import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError

logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str, Path, Image.Image, np.ndarray]


@dataclass(frozen=True)
class LoadedImage:
    """A decoded RGBA image and where it came from"""
    image: Image.Image
    source: str

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def to_array(self) -> np.ndarray:
        """HxWx4 uint8 RGBA pixels"""
        return np.asarray(self.image, dtype=np.uint8)


class ImageCache:
    """
    Decoded-image cache owned by the host.

    Keys are source paths/URLs, or a SHA-1 digest for byte sources.
    Least recently used entries are evicted once max_entries is exceeded.
    """

    def __init__(self, max_entries: int = 16):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: 'OrderedDict[str, LoadedImage]' = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[LoadedImage]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
            logger.debug("Image cache hit: %s", key)
        return entry

    def put(self, key: str, image: LoadedImage) -> None:
        self._entries[key] = image
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Image cache evicted: %s", evicted)

    def invalidate(self, key: str) -> bool:
        """Drop one entry, returning whether it was present"""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()


class ImageLoader:
    """Loads image sources into RGBA images, optionally through a cache"""

    SUPPORTED_FORMATS = {'.png', '.gif', '.jpg', '.jpeg', '.bmp', '.webp', '.tif', '.tiff'}
    HTTP_TIMEOUT = 30

    def __init__(self, cache: Optional[ImageCache] = None, session: Optional[requests.Session] = None):
        self.cache = cache
        self.session = session

    @staticmethod
    def cache_key(source: ImageSource) -> Optional[str]:
        """Stable key for cacheable sources (None for in-memory images)"""
        if isinstance(source, (bytes, bytearray)):
            return "sha1:" + hashlib.sha1(bytes(source)).hexdigest()
        if isinstance(source, Path):
            return str(source)
        if isinstance(source, str):
            if source.startswith('data:'):
                return "sha1:" + hashlib.sha1(source.encode('utf-8')).hexdigest()
            return source
        return None

    def load(self, source: ImageSource) -> LoadedImage:
        """Decode a source, raising ImageDecodeError on any failure"""
        key = self.cache_key(source)
        if key is not None and self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        loaded = self._decode(source)

        if key is not None and self.cache is not None:
            self.cache.put(key, loaded)
        return loaded

    async def load_async(self, source: ImageSource) -> LoadedImage:
        """Decode off the event loop thread"""
        return await asyncio.to_thread(self.load, source)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def _decode(self, source: ImageSource) -> LoadedImage:
        if isinstance(source, Image.Image):
            return LoadedImage(self._to_rgba(source), source="<image>")

        if isinstance(source, np.ndarray):
            return LoadedImage(self._from_array(source), source="<array>")

        if isinstance(source, (bytes, bytearray)):
            return LoadedImage(self._open_bytes(bytes(source), "<bytes>"), source="<bytes>")

        if isinstance(source, str) and source.startswith('data:'):
            return LoadedImage(self._open_data_url(source), source="<data-url>")

        if isinstance(source, str) and source.startswith(('http://', 'https://')):
            return LoadedImage(self._open_bytes(self._fetch(source), source), source=source)

        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                raise ImageDecodeError(str(path), "file not found")
            if path.suffix.lower() not in self.SUPPORTED_FORMATS:
                raise ImageDecodeError(str(path), f"unsupported format: {path.suffix}")
            return LoadedImage(self._open_bytes(path.read_bytes(), str(path)), source=str(path))

        raise ImageDecodeError(repr(source), f"unsupported source type: {type(source).__name__}")

    def _fetch(self, url: str) -> bytes:
        getter = self.session.get if self.session is not None else requests.get
        try:
            response = getter(url, timeout=self.HTTP_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ImageDecodeError(url, str(exc)) from exc
        return response.content

    def _open_data_url(self, url: str) -> Image.Image:
        header, _, payload = url.partition(',')
        if ';base64' not in header:
            raise ImageDecodeError("<data-url>", "only base64 data URLs are supported")
        try:
            data = base64.b64decode(payload, validate=True)
        except ValueError as exc:
            raise ImageDecodeError("<data-url>", "invalid base64 payload") from exc
        return self._open_bytes(data, "<data-url>")

    @classmethod
    def _open_bytes(cls, data: bytes, label: str) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise ImageDecodeError(label, str(exc)) from exc
        return cls._to_rgba(img)

    @staticmethod
    def _to_rgba(img: Image.Image) -> Image.Image:
        if img.mode == 'I' or img.mode.startswith('I;16'):
            # 16-bit grayscale (depth maps): keep the high byte
            wide = np.asarray(img).astype(np.int64)
            img = Image.fromarray(np.clip(wide >> 8, 0, 255).astype(np.uint8))
        if img.mode != 'RGBA':
            img = img.convert('RGBA')
        return img

    @staticmethod
    def _from_array(pixels: np.ndarray) -> Image.Image:
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ImageDecodeError("<array>", "pixels must be HxWx3 or HxWx4")

        pixels = pixels.astype(np.uint8)
        if pixels.shape[2] == 3:
            alpha = np.full((*pixels.shape[:2], 1), 255, dtype=np.uint8)
            pixels = np.concatenate([pixels, alpha], axis=2)

        return Image.fromarray(pixels)
