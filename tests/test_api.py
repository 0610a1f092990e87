from __future__ import annotations

import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from format_transformer.config import STAGING_DIR
from format_transformer.main import app


@pytest.fixture
def client(history_db):
    with TestClient(app) as c:
        yield c


def _wait_for(client: TestClient, task_id: str, timeout: float = 60) -> dict:
    deadline = time.time() + timeout
    while time.time() < deadline:
        body = client.get(f"/api/task/{task_id}").json()
        if body["result"] is not None:
            return body
        time.sleep(0.1)
    raise AssertionError(f"task {task_id} did not finish")


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_formats(client):
    body = client.get("/api/formats").json()
    assert "ICO" in body["categories"]["images"]
    assert "MP3" in body["categories"]["audio"]
    assert 256 in body["ico_sizes"]
    assert "medium" in body["video_presets"]


def test_tools(client):
    assert set(client.get("/api/tools").json()) == {"imagemagick", "ffmpeg", "libreoffice"}


def test_file_info_image(client, tmp_path: Path):
    img = tmp_path / "pic.png"
    Image.new("RGBA", (40, 30)).save(img)
    body = client.post("/api/file-info", json={"path": str(img)}).json()
    assert body["category"] == "images"
    assert (body["width"], body["height"]) == (40, 30)
    assert body["size"] == img.stat().st_size


def test_file_info_missing(client, tmp_path: Path):
    r = client.post("/api/file-info", json={"path": str(tmp_path / "nope.png")})
    assert r.status_code == 404


def test_convert_missing_source(client, tmp_path: Path):
    r = client.post("/api/convert", json={
        "source_path": str(tmp_path / "missing.mov"),
        "output_path": str(tmp_path / "out.mp4"),
        "target_format": "mp4",
        "category": "videos",
    })
    assert r.status_code == 404


def test_convert_missing_output_dir(client, tmp_path: Path):
    src = tmp_path / "a.bin"
    src.write_bytes(b"x")
    r = client.post("/api/convert", json={
        "source_path": str(src),
        "output_path": str(tmp_path / "no" / "such" / "a.out"),
        "target_format": "out",
        "category": "misc",
    })
    assert r.status_code == 400


def test_task_unknown(client):
    assert client.get("/api/task/does-not-exist").status_code == 404


def test_stage_convert_and_history(client, tmp_path: Path):
    payload = bytes(range(256)) * 100
    staged = client.post("/api/stage", files={"file": ("archive.zip", payload, "application/zip")}).json()
    staged_path = Path(staged["path"])
    assert staged_path.parent == STAGING_DIR
    assert staged["file_name"] == "archive.zip"
    assert staged["category"] is None

    out = tmp_path / "archive-copy.zip"
    r = client.post("/api/convert", json={
        "source_path": str(staged_path),
        "output_path": str(out),
        "target_format": "zip",
        "category": "other",
        "options": {},
    })
    assert r.status_code == 200
    task_id = r.json()["task_id"]

    body = _wait_for(client, task_id)
    assert body["status"] == "completed"
    assert body["progress"] == 100
    assert body["result"]["success"] is True
    assert out.read_bytes() == payload
    assert not staged_path.exists()

    history = client.get("/api/history", params={"limit": 5}).json()["conversions"]
    assert history[0]["task_id"] == task_id
    stats = client.get("/api/history/stats").json()
    assert stats["completed"] == 1
    assert client.delete("/api/history").json() == {"ok": True, "removed": 1}
