"""Tests for the structlog processors and the log file tee."""

from unittest.mock import patch

import structlog

from hairvis.config import settings
from hairvis.logging import _TeeWriter, configure_logging, redact_image_payloads
from tests.fakes import make_photo


class TestRedactImagePayloads:
    def test_data_url_replaced(self):
        photo = make_photo()
        event = redact_image_payloads(None, "info", {"event": "photos_ready", "front": photo})
        assert event["front"] == f"<image {len(photo)} chars>"
        assert event["event"] == "photos_ready"

    def test_bare_jpeg_base64_replaced(self):
        payload = make_photo().split(",", 1)[1]
        assert payload.startswith("/9j/")
        event = redact_image_payloads(None, "info", {"event": "x", "data": payload})
        assert event["data"].startswith("<image ")

    def test_short_and_plain_values_kept(self):
        event = {"event": "x", "mime": "data:image/png", "flow_id": "a" * 100, "count": 3}
        assert redact_image_payloads(None, "info", dict(event)) == event


class TestTeeWriter:
    def test_writes_to_file(self, tmp_path, capsys):
        path = tmp_path / "app.log"
        writer = _TeeWriter(str(path))
        writer.write('{"event": "hello"}\n')
        writer.flush()
        assert path.read_text() == '{"event": "hello"}\n'
        assert "hello" in capsys.readouterr().out

    def test_unwritable_path_falls_back_to_stdout(self, tmp_path, capsys):
        writer = _TeeWriter(str(tmp_path / "missing" / "app.log"))
        writer.write("still logged\n")
        captured = capsys.readouterr()
        assert "still logged" in captured.out
        assert "Falling back to stdout-only" in captured.err


class TestConfigureLogging:
    def test_image_payloads_never_rendered(self, capsys):
        with (
            patch.object(settings, "environment", "production"),
            patch.object(settings, "log_file", ""),
        ):
            configure_logging()
            structlog.get_logger().info("photo_received", payload=make_photo())
        structlog.reset_defaults()
        out = capsys.readouterr().out
        assert "photo_received" in out
        assert "base64" not in out
