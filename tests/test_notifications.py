"""Tests for notification payloads and Telegram delivery."""

import logging

import pytest
import requests

from agenda import telegram
from agenda.notifications import (
    LiveEventFinished,
    SectionOvertime,
    YearDeleted,
    YearGenerated,
    format_message,
    to_dict,
)


class FakeResponse:
    def __init__(self, status=200, data=None):
        self.status = status
        self.data = data or {}

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.data


@pytest.fixture
def configured(app):
    app.config["TELEGRAM_BOT_TOKEN"] = "123:abc"
    app.config["TELEGRAM_CHAT_ID"] = "-100"
    return app


class TestFormatMessage:
    """Each payload kind renders its own message."""

    def test_year_generated(self):
        text = format_message(YearGenerated(2026, 156, 52, 7, 45))
        assert "Servicios 2026 generados" in text
        assert "Total: 156" in text
        assert "Domingos: 52" in text

    def test_year_deleted(self):
        text = format_message(YearDeleted(year=2026, deleted=156))
        assert "2026" in text
        assert "156 servicio(s)" in text

    def test_live_event_finished(self):
        payload = LiveEventFinished(
            event_id="e", planned_seconds=480, actual_seconds=600, is_ahead=False,
            recommendations=('"Alabanza": Excedido por 02:00. Considerar más tiempo.',),
        )
        text = format_message(payload)
        assert "08:00" in text
        assert "10:00" in text
        assert "02:00 sobre lo planificado" in text
        assert "• \"Alabanza\"" in text

    def test_section_overtime(self):
        text = format_message(SectionOvertime("e", "Ofrenda", 120, 200))
        assert "<b>Ofrenda</b>" in text
        assert "01:20" in text

    def test_unknown_payload(self):
        with pytest.raises(TypeError):
            format_message({"kind": "year_generated"})

    def test_to_dict_carries_kind(self):
        assert to_dict(YearDeleted(year=2026, deleted=3)) == {"year": 2026, "deleted": 3, "kind": "year_deleted"}


class TestTelegram:

    def test_not_configured(self, app, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("should not post")

        monkeypatch.setattr(telegram.requests, "post", fail)
        assert telegram.send_telegram_message("hola") is False

    def test_sends_to_configured_chat(self, configured, monkeypatch):
        calls = []

        def fake_post(url, json=None, timeout=None):
            calls.append((url, json))
            return FakeResponse()

        monkeypatch.setattr(telegram.requests, "post", fake_post)
        assert telegram.send_notification(YearDeleted(year=2026, deleted=1)) is True
        url, body = calls[0]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert body["chat_id"] == "-100"
        assert body["parse_mode"] == "HTML"

    def test_notification_is_logged_with_payload(self, app, caplog):
        caplog.set_level(logging.INFO, logger=app.logger.name)
        assert telegram.send_notification(YearDeleted(year=2026, deleted=3)) is False
        assert "Notification year_deleted sent=False" in caplog.text
        assert "'deleted': 3" in caplog.text

    def test_transport_error_returns_false(self, configured, monkeypatch):
        monkeypatch.setattr(telegram.requests, "post", lambda *a, **k: FakeResponse(status=500))
        assert telegram.send_telegram_message("hola") is False

    def test_check_connection(self, configured, monkeypatch):
        monkeypatch.setattr(
            telegram.requests, "get",
            lambda *a, **k: FakeResponse(data={"ok": True, "result": {"username": "agenda_bot"}}),
        )
        assert telegram.check_telegram_connection() == {"success": True, "bot": {"username": "agenda_bot"}}

    def test_check_route(self, configured, client, monkeypatch):
        monkeypatch.setattr(telegram.requests, "get", lambda *a, **k: FakeResponse(data={"ok": False, "description": "Unauthorized"}))
        resp = client.post("/telegram/check")
        assert resp.status_code == 502
        assert "Unauthorized" in resp.get_json()["message"]
