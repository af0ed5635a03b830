from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Iterable

import httpx
from PIL import Image, UnidentifiedImageError

from laudo.adapters.object_storage import STORAGE_SCHEME, ObjectStorageAdapter, parse_storage_ref

logger = logging.getLogger(__name__)

LAUDO_ITEM_IMAGE_BOX_CM = (10, 6)

_DATA_URL_TYPES = (
    ('data:image/png', 'png'),
    ('data:image/jpeg', 'jpg'),
    ('data:image/jpg', 'jpg'),
    ('data:image/gif', 'gif'),
    ('data:image/bmp', 'bmp'),
)


@dataclass(frozen=True)
class ResolvedImage:
    data: bytes
    format: str
    width: int
    height: int

    @property
    def aspect(self) -> float | None:
        if self.width <= 0 or self.height <= 0:
            return None
        return self.height / self.width

    def height_for(self, width: float, fallback: float) -> float:
        ratio = self.aspect
        return width * ratio if ratio else fallback


def cm_to_px(cm: float) -> int:
    return round(cm * 96 / 2.54)


def cm_to_twip(cm: float) -> int:
    return round(cm * 1440 / 2.54)


def cm_to_pt(cm: float) -> int:
    return round(cm * 72 / 2.54)


def cm_to_pt_exact(cm: float) -> float:
    return cm * 72 / 2.54


def pt_to_px(pt: float) -> int:
    return round(pt * 96 / 72)


def fit_into_box(
    natural_width: float | None,
    natural_height: float | None,
    box_width: float,
    box_height: float,
) -> tuple[int, int]:
    bw = max(1, round(box_width))
    bh = max(1, round(box_height))
    nw = max(0, round(natural_width or 0))
    nh = max(0, round(natural_height or 0))
    if not nw or not nh:
        return bw, bh
    scale = min(bw / nw, bh / nh)
    return max(1, round(nw * scale)), max(1, round(nh * scale))


def supported_image_type(data_url: str | None) -> str | None:
    lower = str(data_url or '').lower()
    for prefix, kind in _DATA_URL_TYPES:
        if lower.startswith(prefix):
            return kind
    return None


def decode_data_url(data_url: str) -> bytes:
    _, _, payload = str(data_url or '').partition(',')
    return base64.b64decode(payload, validate=False)


def normalize_image_bytes(raw: bytes) -> ResolvedImage:
    """Decode with Pillow and re-encode into a format both renderers embed (PNG or JPEG)."""
    with Image.open(io.BytesIO(raw)) as img:
        img.load()
        width, height = img.size
        fmt = (img.format or '').upper()
        if fmt == 'PNG':
            return ResolvedImage(data=raw, format='png', width=width, height=height)
        if fmt in {'JPEG', 'MPO'} and img.mode in {'RGB', 'L', 'CMYK'}:
            return ResolvedImage(data=raw, format='jpeg', width=width, height=height)

        frame = img
        if frame.mode not in {'RGB', 'RGBA', 'L', 'LA'}:
            frame = frame.convert('RGBA')
        out = io.BytesIO()
        frame.save(out, format='PNG')
    return ResolvedImage(data=out.getvalue(), format='png', width=width, height=height)


class ImageResolver:
    """Turns data URLs and remote links into embeddable images, once per reference.

    The resolver owns an ``httpx.AsyncClient`` for the duration of one render; use it
    as an async context manager. In safe mode every reference resolves to ``None``.
    """

    def __init__(
        self,
        *,
        storage: ObjectStorageAdapter | None = None,
        timeout_seconds: float = 30,
        max_bytes: int = 20 * 1024 * 1024,
        safe_mode: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.storage = storage
        self.timeout_seconds = timeout_seconds
        self.max_bytes = max_bytes
        self.safe_mode = safe_mode
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cache: dict[str, ResolvedImage | None] = {}

    async def __aenter__(self) -> ImageResolver:
        self._client = httpx.AsyncClient(
            timeout=max(1.0, float(self.timeout_seconds)),
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def cached(self, ref: str | None) -> ResolvedImage | None:
        return self._cache.get(str(ref or '').strip())

    async def resolve(self, ref: str | None) -> ResolvedImage | None:
        key = str(ref or '').strip()
        if not key or self.safe_mode:
            return None
        if key in self._cache:
            return self._cache[key]
        image = await self._resolve_uncached(key)
        self._cache[key] = image
        return image

    async def resolve_many(self, refs: Iterable[str | None]) -> dict[str, ResolvedImage | None]:
        keys: list[str] = []
        for ref in refs:
            key = str(ref or '').strip()
            if key and key not in keys:
                keys.append(key)
        if self.safe_mode or not keys:
            return {}
        results = await asyncio.gather(*(self.resolve(key) for key in keys))
        return dict(zip(keys, results))

    async def _resolve_uncached(self, ref: str) -> ResolvedImage | None:
        try:
            if ref.lower().startswith('data:'):
                if supported_image_type(ref) is None:
                    logger.warning('unsupported data url image type: %s', ref[:40])
                    return None
                raw = decode_data_url(ref)
            elif ref.lower().startswith(('http://', 'https://')):
                raw = await self._fetch(ref)
            elif ref.startswith(STORAGE_SCHEME):
                url = await self._object_url(ref)
                if url is None:
                    logger.warning('stored image has no reachable url: %s', ref[:80])
                    return None
                raw = await self._fetch(url)
            else:
                logger.warning('unsupported image reference: %s', ref[:80])
                return None
            if not raw:
                return None
            return normalize_image_bytes(raw)
        except (httpx.HTTPError, binascii.Error, UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            logger.warning('image unavailable (%s): %s', ref[:80], exc)
            return None

    async def _object_url(self, ref: str) -> str | None:
        located = parse_storage_ref(ref)
        if located is None or self.storage is None:
            return None
        bucket, path = located
        return await self.storage.object_url(bucket, path, client=self._client)

    async def _fetch(self, url: str) -> bytes:
        client = self._client
        if client is None:
            async with httpx.AsyncClient(
                timeout=max(1.0, float(self.timeout_seconds)),
                follow_redirects=True,
                transport=self._transport,
            ) as own_client:
                return await self._fetch_with(own_client, url)
        return await self._fetch_with(client, url)

    async def _fetch_with(self, client: httpx.AsyncClient, url: str) -> bytes:
        response = await client.get(url)
        if not response.is_success and self.storage is not None:
            refreshed = await self.storage.refresh_url(url, client=client)
            if refreshed and refreshed != url:
                logger.info('retrying image with refreshed storage url')
                response = await client.get(refreshed)
        response.raise_for_status()
        content = response.content
        if len(content) > self.max_bytes:
            raise ValueError(f'image exceeds {self.max_bytes} bytes')
        return content
