"""Shared pytest fixtures for HLS cache tests."""

import os

import pytest

from modules.hls_cache.config import HlsCacheConfig
from modules.hls_cache.manager import HlsCacheManager
from modules.hls_cache.pipeline import ConversionPipeline
from modules.hls_cache.store import SessionStore
from modules.hls_cache.tracker import JobTracker
from tests.utils.fakes import FakeDownloader, FakeTranscoder


@pytest.fixture
def config(tmp_path):
    """Cache configuration rooted in a temporary directory."""
    cache_dir = tmp_path / "hls_cache"
    cache_dir.mkdir()
    return HlsCacheConfig(cache_dir=str(cache_dir))


@pytest.fixture
def store(config):
    return SessionStore(config.cache_dir)


@pytest.fixture
def tracker():
    return JobTracker()


@pytest.fixture
def downloader():
    return FakeDownloader()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def pipeline(config, store, tracker, downloader, transcoder):
    return ConversionPipeline(config, store, tracker, downloader, transcoder)


@pytest.fixture
def manager(config, downloader, transcoder):
    """Manager backed by a real thread pool and fake collaborators."""
    mgr = HlsCacheManager(config, downloader=downloader, transcoder=transcoder)
    mgr.start()
    yield mgr
    mgr.stop()


@pytest.fixture
def make_session_dir(config):
    """Create a session directory with a playlist on disk."""

    def _make(session_id, segments=2):
        session_dir = os.path.join(config.cache_dir, session_id)
        os.makedirs(session_dir, exist_ok=True)
        lines = ["#EXTM3U"]
        for index in range(segments):
            name = f"{index:03d}.ts"
            with open(os.path.join(session_dir, name), "wb") as f:
                f.write(b"segment-%d" % index)
            lines.extend(["#EXTINF:10.0,", name])
        playlist_path = os.path.join(session_dir, "playlist.m3u8")
        with open(playlist_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        return session_dir, playlist_path

    return _make
