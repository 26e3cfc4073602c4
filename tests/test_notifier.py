import logging
import threading

import pytest
import requests

import notifier
from errors import NotificationError
from schemas import NotificationEvent


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


def _event() -> NotificationEvent:
    return NotificationEvent(student_id="s1", quiz_score=5, focus_minutes=30, intervention_id=7)


def test_send_posts_event_payload(monkeypatch):
    calls = []

    def fake_post(url, *, json, headers, timeout):
        calls.append((url, json, headers, timeout))
        return _Response(200)

    monkeypatch.setattr(notifier.requests, "post", fake_post)

    hook = notifier.WebhookNotifier("https://example.com/hook", timeout=2.5)
    hook.send(_event().to_payload())

    url, payload, headers, timeout = calls[0]
    assert url == "https://example.com/hook"
    assert payload == {"student_id": "s1", "quiz_score": 5, "focus_minutes": 30, "intervention_id": 7}
    assert headers["Content-Type"] == "application/json"
    assert timeout == 2.5


@pytest.mark.parametrize("status_code", [301, 404, 500])
def test_send_raises_on_non_2xx(monkeypatch, status_code):
    monkeypatch.setattr(notifier.requests, "post", lambda *a, **k: _Response(status_code))

    with pytest.raises(NotificationError):
        notifier.WebhookNotifier("https://example.com/hook").send({})


def test_send_wraps_network_errors(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(notifier.requests, "post", boom)

    with pytest.raises(NotificationError):
        notifier.WebhookNotifier("https://example.com/hook").send({})


def test_notify_runs_in_background_and_swallows_failures(monkeypatch, caplog):
    done = threading.Event()

    def boom(*args, **kwargs):
        try:
            raise requests.Timeout("slow")
        finally:
            done.set()

    monkeypatch.setattr(notifier.requests, "post", boom)

    with caplog.at_level(logging.WARNING, logger="mentorgate.notify"):
        notifier.WebhookNotifier("https://example.com/hook").notify(_event())
        assert done.wait(2)
        for _ in range(50):
            if caplog.records:
                break
            threading.Event().wait(0.02)

    assert any("failed" in record.getMessage() for record in caplog.records)


def test_disabled_notifier_never_posts(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("webhook must not be called")

    monkeypatch.setattr(notifier.requests, "post", fail)

    disabled = notifier.build_notifier(None)
    assert disabled.enabled is False
    disabled.notify(_event())


def test_build_notifier_with_url():
    hook = notifier.build_notifier("https://example.com/hook", timeout=3)
    assert isinstance(hook, notifier.WebhookNotifier)
    assert hook.timeout == 3
