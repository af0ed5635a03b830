"""Tests for image resolution and storage URL recovery."""

import asyncio

import httpx
import pytest

from conftest import make_data_url, make_image_bytes
from laudo.adapters.images import (
    ImageResolver,
    cm_to_twip,
    fit_into_box,
    normalize_image_bytes,
    supported_image_type,
)
from laudo.adapters.object_storage import (
    ObjectStorageAdapter,
    ObjectStorageConfig,
    parse_storage_path,
    parse_storage_ref,
    storage_ref,
)


def _storage(base_url=None, api_key=None) -> ObjectStorageAdapter:
    return ObjectStorageAdapter(
        ObjectStorageConfig(base_url=base_url, api_key=api_key, signed_url_ttl_seconds=3600, timeout_seconds=20)
    )


class TestFitIntoBox:
    @pytest.mark.parametrize(
        'natural,box',
        [
            ((4000, 3000), (378, 227)),
            ((300, 1200), (378, 227)),
            ((10, 10), (378, 227)),
            ((1, 999), (50, 50)),
            ((777, 333), (120, 120)),
        ],
    )
    def test_never_exceeds_box_and_keeps_ratio(self, natural, box):
        width, height = fit_into_box(*natural, *box)
        assert 1 <= width <= box[0]
        assert 1 <= height <= box[1]
        if width > 10 and height > 10:
            assert abs(width / height - natural[0] / natural[1]) < 0.05 * (natural[0] / natural[1])

    def test_landscape_photo(self):
        assert fit_into_box(4000, 3000, 378, 227) == (303, 227)

    def test_unknown_size_uses_box(self):
        assert fit_into_box(0, None, 10, 5) == (10, 5)

    def test_unit_conversion(self):
        assert cm_to_twip(2.54) == 1440


class TestNormalize:
    def test_png_kept(self):
        raw = make_image_bytes(40, 20)
        image = normalize_image_bytes(raw)
        assert image.format == 'png'
        assert (image.width, image.height) == (40, 20)
        assert image.data == raw
        assert image.height_for(100, 7) == 50

    def test_jpeg_kept(self):
        image = normalize_image_bytes(make_image_bytes(30, 30, 'JPEG'))
        assert image.format == 'jpeg'

    def test_gif_reencoded_as_png(self):
        image = normalize_image_bytes(make_image_bytes(12, 8, 'GIF'))
        assert image.format == 'png'
        assert image.data.startswith(b'\x89PNG')
        assert (image.width, image.height) == (12, 8)

    def test_supported_types(self):
        assert supported_image_type('data:image/png;base64,AAAA') == 'png'
        assert supported_image_type('data:image/JPEG;base64,AAAA') == 'jpg'
        assert supported_image_type('data:image/webp;base64,AAAA') is None


class TestImageResolver:
    def test_data_url(self, offline_resolver):
        image = asyncio.run(offline_resolver.resolve(make_data_url(64, 32)))
        assert image is not None
        assert (image.width, image.height) == (64, 32)

    def test_unsupported_data_url(self, offline_resolver):
        assert asyncio.run(offline_resolver.resolve('data:image/webp;base64,AAAA')) is None

    def test_broken_data_url(self, offline_resolver):
        assert asyncio.run(offline_resolver.resolve('data:image/png;base64,bm90IGFuIGltYWdl')) is None

    def test_safe_mode_resolves_nothing(self):
        resolver = ImageResolver(safe_mode=True)
        assert asyncio.run(resolver.resolve(make_data_url())) is None
        assert asyncio.run(resolver.resolve_many([make_data_url()])) == {}

    def test_resolve_many_fetches_each_url_once(self):
        png = make_image_bytes(10, 10)
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            if request.url.path == '/missing.png':
                return httpx.Response(404)
            return httpx.Response(200, content=png)

        async def run():
            async with ImageResolver(transport=httpx.MockTransport(handler)) as resolver:
                return await resolver.resolve_many(
                    [
                        'https://cdn.example.com/a.png',
                        'https://cdn.example.com/a.png',
                        'https://cdn.example.com/missing.png',
                        None,
                        '',
                    ]
                )

        images = asyncio.run(run())
        assert set(images) == {'https://cdn.example.com/a.png', 'https://cdn.example.com/missing.png'}
        assert images['https://cdn.example.com/a.png'].width == 10
        assert images['https://cdn.example.com/missing.png'] is None
        assert sorted(calls) == ['https://cdn.example.com/a.png', 'https://cdn.example.com/missing.png']

    def test_expired_signed_url_is_refreshed_once(self):
        png = make_image_bytes(20, 10)
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, request.url.params.get('token')))
            if request.method == 'POST':
                assert request.url.path == '/storage/v1/object/sign/laudos/fotos/a.png'
                assert request.headers['apikey'] == 'secret'
                return httpx.Response(200, json={'signedURL': '/object/sign/laudos/fotos/a.png?token=new'})
            if request.url.params.get('token') == 'new':
                return httpx.Response(200, content=png)
            return httpx.Response(400)

        async def run():
            resolver = ImageResolver(
                storage=_storage('https://proj.supabase.co', 'secret'),
                transport=httpx.MockTransport(handler),
            )
            async with resolver:
                return await resolver.resolve(
                    'https://proj.supabase.co/storage/v1/object/sign/laudos/fotos/a.png?token=old'
                )

        image = asyncio.run(run())
        assert image is not None
        assert image.width == 20
        assert [method for method, _, _ in seen] == ['GET', 'POST', 'GET']

    def test_stored_object_is_fetched_through_a_signed_url(self):
        png = make_image_bytes(12, 6)
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.method)
            if request.method == 'POST':
                assert request.url.path == '/storage/v1/object/sign/laudos/fotos/a.png'
                return httpx.Response(200, json={'signedURL': '/object/sign/laudos/fotos/a.png?token=t'})
            assert request.url.params.get('token') == 't'
            return httpx.Response(200, content=png)

        async def run():
            resolver = ImageResolver(
                storage=_storage('https://proj.supabase.co', 'secret'),
                transport=httpx.MockTransport(handler),
            )
            async with resolver:
                return await resolver.resolve(storage_ref('laudos', 'fotos/a.png'))

        image = asyncio.run(run())
        assert image is not None
        assert image.width == 12
        assert seen == ['POST', 'GET']

    def test_stored_object_without_storage_is_unavailable(self, offline_resolver):
        assert asyncio.run(offline_resolver.resolve('storage://laudos/fotos/a.png')) is None


class TestStoragePaths:
    @pytest.mark.parametrize(
        'url,expected',
        [
            ('https://x.supabase.co/storage/v1/object/sign/b/p/q.png?token=1', ('b', 'p/q.png')),
            ('https://x.supabase.co/storage/v1/object/public/b/a%20b.png', ('b', 'a b.png')),
            ('https://x.supabase.co/storage/v1/object/download/public/b/x.png', ('b', 'x.png')),
            ('https://x.supabase.co/storage/v1/object/download/b/x.png', ('b', 'x.png')),
            ('https://x.supabase.co/storage/v1/object/b/dir/x.png', ('b', 'dir/x.png')),
            ('https://example.com/img.png', None),
            ('not a url', None),
        ],
    )
    def test_layouts(self, url, expected):
        assert parse_storage_path(url) == expected

    def test_unconfigured_adapter_falls_back_to_public_url(self):
        url = 'https://x.supabase.co/storage/v1/object/sign/b/x.png?token=old'
        refreshed = asyncio.run(_storage().refresh_url(url))
        assert refreshed == 'https://x.supabase.co/storage/v1/object/public/b/x.png'

    def test_foreign_host_is_not_refreshed(self):
        assert asyncio.run(_storage().refresh_url('https://cdn.example.com/storage/v1/object/b/x.png')) is None

    @pytest.mark.parametrize(
        'ref,expected',
        [
            ('storage://process-documents/proc/1/foto.png', ('process-documents', 'proc/1/foto.png')),
            ('storage://bucket-only', None),
            ('storage:///x.png', None),
            ('https://x.supabase.co/storage/v1/object/public/b/x.png', None),
        ],
    )
    def test_storage_refs(self, ref, expected):
        assert parse_storage_ref(ref) == expected

    def test_storage_ref_strips_leading_slash(self):
        assert storage_ref('b', '/dir/x.png') == 'storage://b/dir/x.png'

    def test_unconfigured_adapter_has_no_object_url(self):
        assert asyncio.run(_storage().object_url('b', 'x.png')) is None
