import threading
import urllib.error
import urllib.request

import pytest

pytest.importorskip("picamera2")
pytest.importorskip("PIL")

from rover.camera_streamer import StreamingHandler, StreamingOutput, StreamingServer


@pytest.fixture
def http_server():
    output = StreamingOutput()
    httpd = StreamingServer(("127.0.0.1", 0), StreamingHandler, output)
    threading.Thread(target=httpd.serve_forever, daemon=True).start()
    yield httpd, output
    httpd.shutdown()
    httpd.server_close()


def test_snapshot_serves_latest_frame(http_server):
    httpd, output = http_server
    output.update_frame(b"\xff\xd8jpeg\xff\xd9")
    url = f"http://127.0.0.1:{httpd.server_address[1]}/snapshot.jpg"
    with urllib.request.urlopen(url, timeout=2) as resp:
        assert resp.headers["Content-Type"] == "image/jpeg"
        assert resp.read() == b"\xff\xd8jpeg\xff\xd9"


def test_snapshot_before_first_frame(http_server):
    httpd, _ = http_server
    url = f"http://127.0.0.1:{httpd.server_address[1]}/snapshot.jpg"
    with pytest.raises(urllib.error.HTTPError) as exc:
        urllib.request.urlopen(url, timeout=2)
    assert exc.value.code == 503
