"""
Unit tests for manifest parsing, session views and configuration.
"""

import os

from modules.hls_cache.config import HlsCacheConfig, get_hls_cache_config
from modules.hls_cache.playlist import count_segments, list_segments, read_segment_count
from modules.hls_cache.session import HlsSession

MANIFEST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:10
#EXT-X-MEDIA-SEQUENCE:0
#EXTINF:10.000000,
000.ts
#EXTINF:10.000000,
001.ts
#EXTINF:4.200000,
002.ts
#EXT-X-ENDLIST
"""


class TestPlaylist:
    """Test suite for manifest parsing."""

    def test_count_segments(self):
        """Test only .ts references are counted."""
        assert count_segments(MANIFEST) == 3
        assert list_segments(MANIFEST) == ["000.ts", "001.ts", "002.ts"]

    def test_empty_manifest(self):
        """Test a manifest with only tags has no segments."""
        assert count_segments("#EXTM3U\n#EXT-X-ENDLIST\n") == 0

    def test_crlf_and_blank_lines(self):
        """Test Windows line endings and blank lines are tolerated."""
        assert count_segments("#EXTM3U\r\n\r\n#EXTINF:10,\r\n000.ts\r\n") == 1

    def test_read_segment_count(self, tmp_path):
        """Test counting from a file on disk."""
        path = tmp_path / "playlist.m3u8"
        path.write_text(MANIFEST)
        assert read_segment_count(str(path)) == 3


class TestSessionViews:
    """Test suite for HlsSession public views."""

    def test_track_and_result_views(self):
        """Test the list and job-result representations."""
        session = HlsSession(
            id="s1", title="Song A", segments_dir="/c/s1", playlist_path="/c/s1/playlist.m3u8",
            total_segments=3, segment_duration=10.0, origin_url="https://example.test/a", listen_count=5,
        )
        track = session.to_track_dict("k1")
        assert track == {
            "id": "k1",
            "title": "Song A",
            "url": "/api/hls/s1/playlist.m3u8",
            "session_id": "s1",
            "total_segments": 3,
            "segment_duration": 10.0,
            "listen_count": 5,
        }
        result = session.to_result_dict("j1")
        assert result["id"] == "j1"
        assert result["playlist_url"] == "/api/hls/s1/playlist.m3u8"

    def test_entry_round_trip(self):
        """Test ledger entries restore an equal session."""
        session = HlsSession(id="s1", title="T", segments_dir="/c/s1", playlist_path="/c/s1/p.m3u8")
        assert HlsSession.from_entry(session.to_entry("k1")) == session


class TestConfig:
    """Test suite for HlsCacheConfig."""

    def test_defaults(self):
        """Test defaults when the section is absent."""
        config = get_hls_cache_config({})
        assert config.cache_dir == "./hls_cache"
        assert config.segment_duration == 10.0
        assert config.ffmpeg_path == "ffmpeg"
        assert config.ytdlp_path == "yt-dlp"
        assert config.max_workers == 2

    def test_overrides(self):
        """Test values from the hls_cache section."""
        config = HlsCacheConfig.from_app_config({
            "hls_cache": {
                "cache_dir": "/data/hls",
                "segment_duration": "6",
                "ffmpeg_path": "/opt/ffmpeg",
                "max_workers": 4,
                "max_finished_jobs": 10,
                "finished_job_ttl": 60,
            }
        })
        assert config.cache_dir == "/data/hls"
        assert config.segment_duration == 6.0
        assert config.ffmpeg_path == "/opt/ffmpeg"
        assert config.max_workers == 4
        assert config.max_finished_jobs == 10
        assert config.finished_job_ttl == 60

    def test_paths(self):
        """Test derived directory layout."""
        config = HlsCacheConfig(cache_dir="/c")
        assert config.get_session_dir("s1") == os.path.join("/c", "s1")
        assert config.get_playlist_path("s1") == os.path.join("/c", "s1", "playlist.m3u8")
        assert config.get_job_dir("j1") == os.path.join("/c", "_downloads", "j1")
