"""
Tests for playlist rewriting.
"""
from urllib.parse import parse_qs, urlparse

import pytest

from iptv_relay.errors import MalformedBaseURL, RewriteError
from iptv_relay.models.playlist import Blank, Comment, MediaURI, parse_playlist
from iptv_relay.services.manifest_rewriter import build_proxy_url, resolve_reference, rewrite

PROXY = "https://relay.local/api/stream-proxy"


def unwrap(line: str) -> str:
    """Recover the upstream URL from a proxied playlist line."""
    assert line.startswith(f"{PROXY}?url=")
    return parse_qs(urlparse(line).query)["url"][0]


class TestResolveReference:

    def test_relative_reference_uses_base_directory(self):
        assert resolve_reference("seg1.ts", "https://h/a/b/c.m3u8") == "https://h/a/b/seg1.ts"

    def test_absolute_reference_kept(self):
        ref = "http://other.example.com:8080/x/seg.ts?token=abc"
        assert resolve_reference(ref, "https://h/a/b/c.m3u8") == ref

    def test_host_absolute_reference_uses_base_host(self):
        resolved = resolve_reference("/x/y.ts", "https://h.example.com:8443/a/b/c.m3u8")
        assert resolved == "https://h.example.com:8443/x/y.ts"

    def test_parent_segments_not_collapsed(self):
        resolved = resolve_reference("../seg.ts", "http://h/a/b/c.m3u8")
        assert resolved == "http://h/a/b/../seg.ts"

    def test_base_without_path(self):
        assert resolve_reference("seg.ts", "http://h") == "http://h/seg.ts"

    def test_malformed_base_rejected(self):
        with pytest.raises(MalformedBaseURL):
            resolve_reference("seg.ts", "not a url")


class TestRewrite:

    def test_relative_segments_proxied(self, sample_media_playlist):
        rewritten = rewrite(sample_media_playlist, "http://origin.example.com/live/1/index.m3u8", PROXY)
        lines = rewritten.split("\n")

        media = [l for l in lines if l and not l.startswith("#")]
        assert [unwrap(l) for l in media] == [
            "http://origin.example.com/live/1/seg1.ts",
            "http://origin.example.com/live/1/seg2.ts",
        ]

    def test_preserves_tags_and_order(self, sample_media_playlist):
        rewritten = rewrite(sample_media_playlist, "http://origin.example.com/index.m3u8", PROXY)
        lines = rewritten.split("\n")

        assert lines[0] == "#EXTM3U"
        assert lines[3] == "#EXT-X-MEDIA-SEQUENCE:12345"
        assert lines[4] == "#EXTINF:4.000,"
        assert lines[5].startswith(PROXY)
        assert lines[6] == "#EXTINF:4.000,"

    def test_line_count_preserved(self, sample_media_playlist, sample_master_playlist):
        for playlist in (sample_media_playlist, sample_master_playlist, "", "\n\n", "a.ts"):
            rewritten = rewrite(playlist, "http://h/p/index.m3u8", PROXY)
            assert len(rewritten.split("\n")) == len(playlist.split("\n"))

    def test_master_playlist_variants(self, sample_master_playlist):
        rewritten = rewrite(sample_master_playlist, "https://origin.example.com/live/master.m3u8", PROXY)
        media = [l for l in rewritten.split("\n") if l.strip() and not l.startswith("#")]

        assert [unwrap(l) for l in media] == [
            "https://cdn.example.com/hls/720/index.m3u8",
            "https://origin.example.com/hls/360/index.m3u8",
            "https://origin.example.com/live/240/index.m3u8",
        ]

    def test_comment_only_playlist_unchanged(self):
        playlist = "#EXTM3U\n#EXT-X-ENDLIST\n\n   \n"
        assert rewrite(playlist, "http://h/index.m3u8", PROXY) == playlist

    def test_reference_whitespace_trimmed(self):
        rewritten = rewrite("  seg.ts  \r", "http://h/a/index.m3u8", PROXY)
        assert unwrap(rewritten) == "http://h/a/seg.ts"

    def test_upstream_url_percent_encoded(self):
        rewritten = rewrite("seg.ts?token=a&b=c", "http://h/index.m3u8", PROXY)
        assert "&b=c" not in rewritten
        assert "%3Ftoken%3Da%26b%3Dc" in rewritten
        assert unwrap(rewritten) == "http://h/seg.ts?token=a&b=c"

    def test_rewriting_twice_double_wraps(self):
        once = rewrite("seg.ts", "http://h/index.m3u8", PROXY)
        twice = rewrite(once, "http://h/index.m3u8", PROXY)
        assert twice != once
        assert unwrap(twice) == once

    def test_malformed_base_fails_whole_rewrite(self, sample_media_playlist):
        with pytest.raises(RewriteError):
            rewrite(sample_media_playlist, "/relative/index.m3u8", PROXY)

    def test_malformed_base_fails_even_without_media_lines(self):
        with pytest.raises(MalformedBaseURL):
            rewrite("#EXTM3U", "index.m3u8", PROXY)


def test_parse_playlist_tags_lines():
    lines = parse_playlist("#EXTM3U\n\nseg.ts")
    assert isinstance(lines[0], Comment)
    assert isinstance(lines[1], Blank)
    assert isinstance(lines[2], MediaURI)
    assert lines[2].reference == "seg.ts"


def test_build_proxy_url():
    assert build_proxy_url(PROXY, "http://h/a b.ts") == f"{PROXY}?url=http%3A%2F%2Fh%2Fa%20b.ts"
