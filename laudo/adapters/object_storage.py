from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit

import httpx

logger = logging.getLogger(__name__)

OBJECT_PREFIX = '/storage/v1/object/'
STORAGE_SCHEME = 'storage://'


@dataclass
class ObjectStorageConfig:
    base_url: str | None
    api_key: str | None
    signed_url_ttl_seconds: int
    timeout_seconds: int


def parse_storage_path(url: str) -> tuple[str, str] | None:
    """Extract ``(bucket, object_path)`` from a storage object URL.

    Accepted layouts after ``/storage/v1/object/``: ``sign/<bucket>/…``,
    ``public/<bucket>/…``, ``download/public/<bucket>/…``, ``download/<bucket>/…``
    and plain ``<bucket>/…``.
    """
    try:
        parts = urlsplit(str(url or ''))
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    idx = parts.path.find(OBJECT_PREFIX)
    if idx == -1:
        return None
    segments = parts.path[idx + len(OBJECT_PREFIX):].split('/')
    head = segments[0] if segments else ''
    if head in {'sign', 'public'}:
        bucket, rest = segments[1:2], segments[2:]
    elif head == 'download':
        if len(segments) > 1 and segments[1] == 'public':
            bucket, rest = segments[2:3], segments[3:]
        else:
            bucket, rest = segments[1:2], segments[2:]
    else:
        bucket, rest = segments[:1], segments[1:]
    bucket_name = unquote(bucket[0]) if bucket else ''
    object_path = unquote('/'.join(rest))
    if not bucket_name or not object_path:
        return None
    return bucket_name, object_path


def storage_ref(bucket: str, path: str) -> str:
    """Reference to a stored object that has no URL yet, resolved at render time."""
    return f'{STORAGE_SCHEME}{bucket}/{path.lstrip("/")}'


def parse_storage_ref(ref: str) -> tuple[str, str] | None:
    value = str(ref or '')
    if not value.startswith(STORAGE_SCHEME):
        return None
    bucket, _, path = value[len(STORAGE_SCHEME):].partition('/')
    if not bucket or not path:
        return None
    return bucket, path


class ObjectStorageAdapter:
    def __init__(self, cfg: ObjectStorageConfig):
        self.cfg = cfg

    @property
    def configured(self) -> bool:
        return bool(self.cfg.base_url and self.cfg.api_key)

    def _base(self, fallback_url: str | None = None) -> str | None:
        if self.cfg.base_url:
            return self.cfg.base_url.rstrip('/')
        if fallback_url:
            parts = urlsplit(fallback_url)
            if parts.scheme and parts.netloc:
                return f'{parts.scheme}://{parts.netloc}'
        return None

    def owns(self, url: str) -> bool:
        host = urlsplit(str(url or '')).netloc.lower()
        if not host:
            return False
        if self.cfg.base_url and urlsplit(self.cfg.base_url).netloc.lower() == host:
            return True
        return 'supabase.co' in host

    def public_url(self, bucket: str, path: str, *, fallback_url: str | None = None) -> str | None:
        base = self._base(fallback_url)
        if not base:
            return None
        return f'{base}{OBJECT_PREFIX}public/{quote(bucket)}/{quote(path)}'

    async def create_signed_url(
        self,
        bucket: str,
        path: str,
        *,
        expires_in: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> str | None:
        if not self.configured:
            return None
        base = self._base()
        assert base is not None

        url = f'{base}{OBJECT_PREFIX}sign/{quote(bucket)}/{quote(path)}'
        key = str(self.cfg.api_key or '').strip()
        headers = {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {key}',
            'apikey': key,
        }
        payload = {'expiresIn': int(expires_in or self.cfg.signed_url_ttl_seconds)}

        if client is None:
            async with httpx.AsyncClient(timeout=max(5, int(self.cfg.timeout_seconds))) as own_client:
                response = await own_client.post(url, headers=headers, json=payload)
        else:
            response = await client.post(url, headers=headers, json=payload)
        response.raise_for_status()

        data = response.json()
        signed = ''
        if isinstance(data, dict):
            signed = str(data.get('signedURL') or data.get('signedUrl') or '').strip()
        if not signed:
            return None
        if signed.startswith('http://') or signed.startswith('https://'):
            return signed
        return f'{base}/storage/v1/{signed.lstrip("/")}'

    async def refresh_url(self, url: str, *, client: httpx.AsyncClient | None = None) -> str | None:
        """Produce a fresh URL for an expired storage link, or ``None`` if it is not ours."""
        if not self.owns(url):
            return None
        located = parse_storage_path(url)
        if located is None:
            return None
        bucket, path = located
        return await self.object_url(bucket, path, client=client, fallback_url=url)

    async def object_url(
        self,
        bucket: str,
        path: str,
        *,
        client: httpx.AsyncClient | None = None,
        fallback_url: str | None = None,
    ) -> str | None:
        """Signed URL for a stored object, or its public URL when signing is unavailable."""
        try:
            signed = await self.create_signed_url(bucket, path, client=client)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning('signed url request failed for %s/%s: %s', bucket, path, exc)
            signed = None
        if signed:
            return signed
        return self.public_url(bucket, path, fallback_url=fallback_url)
