import io
import json
import time

import numpy as np
import pytest
from scipy.io import wavfile

import server
from config import SAMPLE_RATE


def _wav_bytes(seconds=0.5):
    t = np.arange(int(SAMPLE_RATE * seconds)) / SAMPLE_RATE
    samples = (0.4 * np.sin(2 * np.pi * 440.0 * t) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    wavfile.write(buffer, SAMPLE_RATE, samples)
    return buffer.getvalue()


@pytest.fixture
def folders(tmp_path, monkeypatch):
    uploads, outputs = tmp_path / "uploads", tmp_path / "outputs"
    uploads.mkdir()
    outputs.mkdir()
    monkeypatch.setattr(server, "UPLOAD_FOLDER", str(uploads))
    monkeypatch.setattr(server, "OUTPUT_FOLDER", str(outputs))
    monkeypatch.setattr(server, "conversion_status", {})
    return uploads, outputs


@pytest.fixture
def client(folders):
    server.app.config["TESTING"] = True
    with server.app.test_client() as client:
        yield client


def _completed(folders, original="My Song Title.wav", duration=1):
    uploads, _ = folders
    conversion_id = "0123456789abcdef"
    upload = uploads / f"{conversion_id}_upload.wav"
    upload.write_bytes(_wav_bytes())
    server.conversion_status[conversion_id] = {
        'status': 'processing', 'created_time': time.time(),
        'obj_file': None, 'mtl_file': None, 'stl_file': None, 'error': None,
    }
    server.convert_audio_background(conversion_id, str(upload), duration, original)
    return conversion_id, upload


def test_index_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert b'name="audio"' in response.data


def test_upload_requires_a_file(client):
    response = client.post("/upload", data={})
    assert response.status_code == 400
    assert response.get_json()["error"] == "No audio file provided"


def test_upload_rejects_unknown_extension(client):
    data = {"audio": (io.BytesIO(b"hello"), "notes.txt")}
    response = client.post("/upload", data=data, content_type="multipart/form-data")
    assert response.status_code == 400


@pytest.mark.parametrize("duration", ["0", "301", "ten"])
def test_upload_rejects_bad_duration(client, duration):
    data = {"audio": (io.BytesIO(_wav_bytes()), "tone.wav"), "duration": duration}
    response = client.post("/upload", data=data, content_type="multipart/form-data")
    assert response.status_code == 400


def test_output_name_uses_first_two_words():
    assert server.output_name_for("My Song Title.wav", 20, "abcdef123456") == "My_Song_20s_abcdef12"
    assert server.output_name_for("bass-line.mp3", 5, "abcdef123456") == "bass-line_5s_abcdef12"


def test_background_conversion_writes_outputs(folders):
    _, outputs = folders
    conversion_id, upload = _completed(folders)
    status = server.conversion_status[conversion_id]

    assert status["status"] == "completed", status["error"]
    assert not upload.exists()
    for key in ("obj_file", "mtl_file", "stl_file", "glb_file"):
        assert (outputs / status[key]).exists()
    obj_text = (outputs / status["obj_file"]).read_text()
    assert f"mtllib {status['mtl_file']}" in obj_text
    assert status["mesh_info"]["faces_count"] > 0
    assert status["mesh_info"]["is_watertight"] is True


def test_background_conversion_reports_errors(folders):
    uploads, _ = folders
    upload = uploads / "broken.wav"
    upload.write_text("not audio")
    server.conversion_status["bad"] = {'status': 'processing', 'created_time': time.time()}
    server.convert_audio_background("bad", str(upload), 5, "broken.wav")

    status = server.conversion_status["bad"]
    assert status["status"] == "error"
    assert status["error"]
    assert not upload.exists()


def test_status_download_and_preview(client, folders):
    conversion_id, _ = _completed(folders)

    assert client.get("/status/unknown").status_code == 404
    assert client.get(f"/status/{conversion_id}").get_json()["status"] == "completed"

    response = client.get(f"/download/{conversion_id}/obj")
    assert response.status_code == 200
    assert response.data.startswith(b"# Spectrogram sculpture export")
    assert client.get(f"/download/{conversion_id}/mtl").status_code == 200
    assert client.get(f"/download/{conversion_id}/stl").status_code == 200
    glb = client.get(f"/download/{conversion_id}/glb")
    assert glb.status_code == 200
    assert glb.data[:4] == b"glTF"
    assert client.get(f"/download/{conversion_id}/ply").status_code == 404

    preview = client.get(f"/preview/{conversion_id}").get_json()
    assert preview["metadata"]["type"] == "BufferGeometry"
    assert preview["mesh_info"]["faces_count"] > 0


def test_download_before_completion(client, folders):
    server.conversion_status["pending"] = {'status': 'processing', 'created_time': time.time(),
                                           'obj_file': None}
    assert client.get("/download/pending/obj").status_code == 400
    assert client.get("/preview/pending").status_code == 400


def test_cleanup_removes_stale_conversions(client, folders):
    _, outputs = folders
    conversion_id, _ = _completed(folders)
    status = server.conversion_status[conversion_id]
    status["created_time"] -= server.STALE_AFTER_SECONDS + 1
    json_file = status["json_file"]

    response = client.get("/cleanup")
    assert json.loads(response.data)["message"] == "Cleaned up 1 old conversions"
    assert conversion_id not in server.conversion_status
    assert not (outputs / status["obj_file"]).exists()
    assert not (outputs / json_file).exists()
