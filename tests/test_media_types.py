"""Tests for media type classification and loader mapping."""

import pytest

from loader.media_types import MediaType, map_content_type, media_type_from_specifier, media_type_to_loader


class TestMediaTypeFromSpecifier:
    """Extension-only classification."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("file:///a/mod.ts", MediaType.TYPESCRIPT),
            ("file:///a/mod.d.ts", MediaType.DTS),
            ("file:///a/mod.mts", MediaType.MTS),
            ("file:///a/mod.d.mts", MediaType.DMTS),
            ("file:///a/mod.cts", MediaType.CTS),
            ("file:///a/mod.d.cts", MediaType.DCTS),
            ("file:///a/mod.tsx", MediaType.TSX),
            ("file:///a/mod.js", MediaType.JAVASCRIPT),
            ("file:///a/mod.jsx", MediaType.JSX),
            ("file:///a/mod.mjs", MediaType.MJS),
            ("file:///a/mod.cjs", MediaType.CJS),
            ("file:///a/data.json", MediaType.JSON),
            ("file:///a/lib.wasm", MediaType.WASM),
            ("file:///a/mod.js.map", MediaType.SOURCE_MAP),
            ("file:///a/.tsbuildinfo", MediaType.TS_BUILD_INFO),
            ("file:///a/README", MediaType.UNKNOWN),
            ("file:///a/style.css", MediaType.UNKNOWN),
        ],
    )
    def test_extensions(self, url, expected):
        assert media_type_from_specifier(url) == expected

    def test_query_string_is_ignored(self):
        assert media_type_from_specifier("https://esm.sh/mod.ts?target=es2022") == MediaType.TYPESCRIPT


class TestMapContentType:
    """Content-Type driven classification."""

    def test_typescript_mime_with_parameters(self):
        assert map_content_type("https://x/mod.ts", "application/typescript; charset=utf-8") == MediaType.TYPESCRIPT

    def test_mime_is_case_insensitive(self):
        assert map_content_type("https://x/mod", "Application/TypeScript") == MediaType.TYPESCRIPT

    def test_typescript_mime_on_declaration_file(self):
        assert map_content_type("https://x/mod.d.ts", "application/typescript") == MediaType.DTS

    def test_javascript_mime_refined_by_extension(self):
        assert map_content_type("https://x/a.jsx", "application/javascript") == MediaType.JSX
        assert map_content_type("https://x/a.mts", "text/javascript") == MediaType.MJS
        assert map_content_type("https://x/a", "text/javascript") == MediaType.JAVASCRIPT

    def test_fixed_table(self):
        assert map_content_type("https://x/a", "text/jsx") == MediaType.JSX
        assert map_content_type("https://x/a", "application/json") == MediaType.JSON
        assert map_content_type("https://x/a", "application/wasm") == MediaType.WASM

    def test_generic_types_fall_back_to_extension(self):
        assert map_content_type("https://x/a.tsx", "text/plain") == MediaType.TSX
        assert map_content_type("https://x/a.json", "application/octet-stream") == MediaType.JSON

    def test_unrelated_mime_is_unknown(self):
        assert map_content_type("https://x/a.ts", "text/html") == MediaType.UNKNOWN

    def test_missing_header_uses_extension(self):
        assert map_content_type("file:///a/mod.ts", None) == MediaType.TYPESCRIPT


class TestMediaTypeToLoader:
    """Bundler loader ids."""

    @pytest.mark.parametrize(
        "media_type,loader",
        [
            (MediaType.JAVASCRIPT, "js"),
            (MediaType.MJS, "js"),
            (MediaType.JSX, "jsx"),
            (MediaType.TYPESCRIPT, "ts"),
            (MediaType.MTS, "ts"),
            (MediaType.TSX, "tsx"),
            (MediaType.JSON, "json"),
        ],
    )
    def test_bundleable(self, media_type, loader):
        assert media_type_to_loader(media_type) == loader

    @pytest.mark.parametrize(
        "media_type",
        [
            MediaType.UNKNOWN,
            MediaType.DTS,
            MediaType.DMTS,
            MediaType.DCTS,
            MediaType.TS_BUILD_INFO,
            MediaType.SOURCE_MAP,
        ],
    )
    def test_not_bundleable(self, media_type):
        assert media_type_to_loader(media_type) is None
