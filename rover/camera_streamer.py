"""
camera_streamer.py

HTTP camera server using the PiCamera2 library. Streams frames as JPEGs via
/stream.mjpg and serves the latest frame alone at /snapshot.jpg.
Supports configurable resolution and framerate.
"""

import io
import threading
import time
from http import server
from picamera2 import Picamera2
from PIL import Image
import logging

# Configure logging
log = logging.getLogger(__name__)

# HTML landing page for root access to server
PAGE = """\
<html>
<head><title>Rover Camera</title></head>
<body><h1>Rover Live Feed</h1>
<img src="/stream.mjpg">
</body>
</html>
"""


class StreamingOutput:
    """
    Thread-safe buffer for the most recent JPEG frame, shared between the
    capture loop and HTTP handlers. Notifies waiting clients on new frame.
    """

    def __init__(self):
        self.frame = None
        self.condition = threading.Condition()

    def update_frame(self, new_frame):
        with self.condition:
            self.frame = new_frame
            self.condition.notify_all()

    def current_frame(self):
        with self.condition:
            return self.frame


class StreamingServer(server.ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler, output):
        super().__init__(address, handler)
        self.output = output


class StreamingHandler(server.BaseHTTPRequestHandler):
    """
    Serves the landing page, the MJPEG stream and single-frame snapshots.
    """

    def do_GET(self):
        output = self.server.output
        if self.path == "/":
            self.send_response(200)
            self.send_header("Content-type", "text/html")
            self.end_headers()
            self.wfile.write(PAGE.encode("utf-8"))

        elif self.path == "/snapshot.jpg":
            log.info("Sending current snapshot")
            frame = output.current_frame()
            if frame is None:
                self.send_error(503, "No frame captured yet")
                return
            self.send_response(200)
            self.send_header("Content-Type", "image/jpeg")
            self.send_header("Content-Length", len(frame))
            self.end_headers()
            self.wfile.write(frame)

        elif self.path == "/stream.mjpg":
            self.send_response(200)
            self.send_header("Age", 0)
            self.send_header("Cache-Control", "no-cache, private")
            self.send_header("Pragma", "no-cache")
            self.send_header(
                "Content-Type", "multipart/x-mixed-replace; boundary=FRAME"
            )
            self.end_headers()

            try:
                while True:
                    with output.condition:
                        output.condition.wait()
                        frame = output.frame
                    self.wfile.write(b"--FRAME\r\n")
                    self.send_header("Content-Type", "image/jpeg")
                    self.send_header("Content-Length", len(frame))
                    self.end_headers()
                    self.wfile.write(frame)
                    self.wfile.write(b"\r\n")
            except (BrokenPipeError, ConnectionResetError) as e:
                log.info(f"Client disconnected: {self.client_address} ({e})")

        else:
            self.send_error(404)


def encode_jpeg(frame, quality=85) -> bytes:
    """JPEG-encode an RGB/BGR array as returned by Picamera2."""
    jpeg_bytes = io.BytesIO()
    Image.fromarray(frame).save(jpeg_bytes, format="JPEG", quality=quality)
    return jpeg_bytes.getvalue()


def capture_loop(camera, output, stop_event, framerate=1):
    """
    Continuously grab frames from the camera, convert them to JPEG and
    update the output buffer until *stop_event* is set.
    """
    interval = 1.0 / framerate
    frame_count = 0

    while not stop_event.is_set():
        try:
            frame = camera.capture_array("main")
            if frame is None:
                log.warning("[CameraStreamer] Frame capture returned None.")
            else:
                output.update_frame(encode_jpeg(frame))
                frame_count += 1
                if frame_count % 24 == 0:
                    log.debug(
                        f"[CameraStreamer] Frame: {frame_count}, time: {time.monotonic():.2f}"
                    )
        except (OSError, RuntimeError, ValueError) as e:
            log.error(f"[CameraStreamer] Frame capture failed: {e}")

        stop_event.wait(timeout=interval)


class CameraStreamer:
    """Owns the camera, its capture thread and the HTTP server thread."""

    def __init__(self, camera_cfg):
        self.port = camera_cfg.port
        self.resolution = tuple(camera_cfg.resolution)
        self.framerate = camera_cfg.fps
        self.output = StreamingOutput()
        self.stop_event = threading.Event()
        self.camera = None
        self.http = None

    def start(self):
        log.info("Initializing camera...")
        self.camera = Picamera2()
        cam_config = self.camera.create_video_configuration(
            main={"size": self.resolution, "format": "BGR888"},
            controls={"FrameRate": self.framerate},
        )
        log.info(f"Camera configuration: {cam_config}")
        self.camera.configure(cam_config)
        self.camera.start()
        log.info("Camera started.")

        threading.Thread(
            target=capture_loop,
            args=(self.camera, self.output, self.stop_event, self.framerate),
            daemon=True,
        ).start()

        self.http = StreamingServer(("", self.port), StreamingHandler, self.output)
        threading.Thread(target=self.http.serve_forever, daemon=True).start()
        log.info(f"Streaming server started on port {self.port}.")

    def stop(self):
        log.info("Stopping camera stream...")
        self.stop_event.set()
        if self.http is not None:
            self.http.shutdown()
            self.http.server_close()
        if self.camera is not None:
            self.camera.stop()
