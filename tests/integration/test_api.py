"""
HTTP tests for the HLS cache routes, through Flask's test client.
"""

import io
import os

import pytest

from modules.hls_cache.hashing import derive_key
from tests.utils.fakes import wait_for_job
from webserver import create_app

URL = "https://example.test/song"


@pytest.fixture
def client(manager):
    app = create_app(manager)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def readonly_client(manager):
    app = create_app(manager, readonly=True)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def ready_session(client, manager):
    """Submit one URL through the API and wait for it; returns the job dict."""
    response = client.post("/api/download", json={"url": URL, "title": "Song A"})
    assert response.status_code == 202
    return wait_for_job(manager, response.get_json()["id"])


class TestDownloadRoutes:
    """Test suite for /api/download."""

    def test_submit_returns_202(self, client, manager):
        """Test a new URL is accepted with a job id."""
        response = client.post("/api/download", json={"url": URL})
        assert response.status_code == 202
        body = response.get_json()
        assert body["status"] == "queued"
        assert wait_for_job(manager, body["id"])["status"] == "ready"

    def test_missing_url(self, client):
        """Test an empty or absent url is a 400."""
        assert client.post("/api/download", json={}).status_code == 400
        assert client.post("/api/download", json={"url": "   "}).status_code == 400
        assert client.post("/api/download", data="not json").status_code == 400

    @pytest.mark.parametrize("body", [
        [],
        ["https://example.test/song"],
        "https://example.test/song",
        {"url": 42},
        {"url": ["https://example.test/song"]},
        {"url": "https://example.test/song", "title": 7},
    ])
    def test_malformed_body_is_400(self, client, manager, body):
        """Test JSON bodies of the wrong shape or type are rejected, not 500."""
        response = client.post("/api/download", json=body)
        assert response.status_code == 400
        assert "error" in response.get_json()
        assert manager.get_status_summary()["total_jobs"] == 0

    def test_stopped_service_is_503(self, client, manager):
        """Test submissions after shutdown report unavailability with the failed job."""
        manager.stop()
        response = client.post("/api/download", json={"url": URL})
        assert response.status_code == 503
        job = client.get(f"/api/download/{response.get_json()['id']}").get_json()
        assert job["status"] == "error"

    def test_duplicate_is_409(self, client, ready_session):
        """Test resubmitting a cached URL is a conflict carrying the failed job id."""
        response = client.post("/api/download", json={"url": URL})
        assert response.status_code == 409
        body = response.get_json()
        assert 'already downloaded: "Song A"' in body["error"]

        job = client.get(f"/api/download/{body['id']}").get_json()
        assert job["status"] == "error"

    def test_job_status(self, client, ready_session):
        """Test a finished job reports its session."""
        response = client.get(f"/api/download/{ready_session['id']}")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "ready"
        assert body["progress"] is None
        assert body["session"]["title"] == "Song A"

    def test_unknown_job_is_404(self, client):
        """Test an unknown job id is a 404 with an error body."""
        response = client.get("/api/download/nope")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Job not found"}


class TestTrackRoutes:
    """Test suite for /api/tracks and /api/mode."""

    def test_list_tracks(self, client, ready_session):
        """Test the track list shows the cached session."""
        tracks = client.get("/api/tracks").get_json()
        assert len(tracks) == 1
        assert tracks[0]["id"] == derive_key(URL)
        assert tracks[0]["title"] == "Song A"
        assert tracks[0]["url"] == ready_session["session"]["playlist_url"]

    def test_delete_track(self, client, ready_session):
        """Test deletion removes the track and its playlist stops resolving."""
        response = client.delete(f"/api/tracks/{derive_key(URL)}")
        assert response.status_code == 200
        assert response.get_json() == {"success": True, "message": "Track 'Song A' deleted"}

        assert client.get("/api/tracks").get_json() == []
        session_id = ready_session["session"]["session_id"]
        assert client.get(f"/api/hls/{session_id}/playlist.m3u8").status_code == 404
        assert client.get(f"/api/hls/{session_id}/000.ts").status_code == 404

    def test_delete_unknown_track(self, client):
        """Test deleting an unknown key is a 404."""
        assert client.delete("/api/tracks/missing").status_code == 404

    def test_mode(self, client, readonly_client):
        """Test the mode endpoint reflects the readonly flag."""
        assert client.get("/api/mode").get_json() == {"readonly": False, "mode": "readwrite"}
        assert readonly_client.get("/api/mode").get_json() == {"readonly": True, "mode": "readonly"}


class TestHlsRoutes:
    """Test suite for playlist and segment serving."""

    def test_playlist(self, client, manager, ready_session):
        """Test the manifest is served with the HLS content type and counted."""
        session_id = ready_session["session"]["session_id"]
        response = client.get(f"/api/hls/{session_id}/playlist.m3u8")

        assert response.status_code == 200
        assert response.mimetype == "application/vnd.apple.mpegurl"
        assert response.data.startswith(b"#EXTM3U")
        assert manager.list_tracks()[0]["listen_count"] == 1

    def test_segment(self, client, ready_session):
        """Test a segment is served as MPEG-TS."""
        session_id = ready_session["session"]["session_id"]
        response = client.get(f"/api/hls/{session_id}/001.ts")

        assert response.status_code == 200
        assert response.mimetype == "video/mp2t"
        assert response.data[:1] == b"\x47"
        response.close()

    def test_unknown_session(self, client):
        """Test unknown sessions are 404 for playlist and segments."""
        assert client.get("/api/hls/nope/playlist.m3u8").status_code == 404
        assert client.get("/api/hls/nope/000.ts").status_code == 404

    def test_missing_segment(self, client, ready_session):
        """Test a segment name that does not exist is a 404."""
        session_id = ready_session["session"]["session_id"]
        assert client.get(f"/api/hls/{session_id}/999.ts").status_code == 404

    def test_symlink_escape_is_403(self, client, config, ready_session, tmp_path):
        """Test a link inside the session pointing outside is refused."""
        secret = tmp_path / "secret.txt"
        secret.write_text("secret")
        session_id = ready_session["session"]["session_id"]
        os.symlink(str(secret), os.path.join(config.get_session_dir(session_id), "evil.ts"))

        response = client.get(f"/api/hls/{session_id}/evil.ts")
        assert response.status_code == 403
        assert b"secret" not in response.data

    def test_cors_header(self, client, ready_session):
        """Test cross-origin players are allowed."""
        response = client.get("/api/tracks", headers={"Origin": "http://player.test"})
        assert response.headers.get("Access-Control-Allow-Origin") in ("*", "http://player.test")


class TestUploadRoute:
    """Test suite for /api/upload."""

    def _post(self, client, data=b"audio bytes", name="My Song.mp3", title=None):
        form = {"file": (io.BytesIO(data), name)}
        if title is not None:
            form["title"] = title
        return client.post("/api/upload", data=form, content_type="multipart/form-data")

    def test_upload(self, client, manager):
        """Test an uploaded file is converted and titled after its name."""
        response = self._post(client)
        assert response.status_code == 202

        job = wait_for_job(manager, response.get_json()["id"])
        assert job["status"] == "ready"
        assert job["session"]["title"] == "My_Song"

    def test_upload_with_title(self, client, manager):
        """Test an explicit title wins over the file name."""
        response = self._post(client, title="Live Take")
        job = wait_for_job(manager, response.get_json()["id"])
        assert job["session"]["title"] == "Live Take"

    def test_duplicate_upload_is_409(self, client, manager):
        """Test identical bytes uploaded twice conflict."""
        wait_for_job(manager, self._post(client).get_json()["id"])
        assert self._post(client, name="copy.mp3").status_code == 409

    def test_unsupported_extension_is_400(self, client):
        """Test non-audio files are rejected."""
        assert self._post(client, name="notes.txt").status_code == 400

    def test_missing_file_is_400(self, client):
        """Test a form without a file part is rejected."""
        response = client.post("/api/upload", data={"title": "x"}, content_type="multipart/form-data")
        assert response.status_code == 400


class TestReadonlyMode:
    """Test suite for readonly deployments."""

    def test_mutating_routes_absent(self, readonly_client):
        """Test download, upload and delete are not served."""
        assert readonly_client.post("/api/download", json={"url": URL}).status_code in (404, 405)
        assert readonly_client.get("/api/download/some-job").status_code in (404, 405)
        assert readonly_client.delete("/api/tracks/some-key").status_code in (404, 405)
        response = readonly_client.post(
            "/api/upload",
            data={"file": (io.BytesIO(b"x"), "a.mp3")},
            content_type="multipart/form-data",
        )
        assert response.status_code in (404, 405)

    def test_read_routes_work(self, readonly_client, manager):
        """Test listing and playback still work in readonly mode."""
        job = wait_for_job(manager, manager.submit_url(URL, "Song A"))
        session_id = job["session"]["session_id"]

        assert len(readonly_client.get("/api/tracks").get_json()) == 1
        assert readonly_client.get(f"/api/hls/{session_id}/playlist.m3u8").status_code == 200
