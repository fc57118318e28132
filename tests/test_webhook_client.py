import io
import urllib.error

import pytest

from app.crm.modules.workflows import webhook_client
from app.crm.modules.workflows.webhook_client import WebhookClient, WebhookError, WebhookRateLimited

URL = "https://hooks.example.com/booth"


class _Response:
    def __init__(self, status, body=b""):
        self.status = status
        self._body = body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _http_error(code, body=b""):
    return urllib.error.HTTPError(URL, code, "error", {}, io.BytesIO(body))


@pytest.fixture()
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(webhook_client.time, "sleep", calls.append)
    return calls


def _serve(monkeypatch, outcomes):
    requests = []

    def fake_urlopen(req, timeout=None):
        requests.append(req)
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(webhook_client.urllib.request, "urlopen", fake_urlopen)
    return requests


def test_server_error_is_retried(monkeypatch, sleeps):
    unavailable = _http_error(503)
    requests = _serve(monkeypatch, [unavailable, _Response(200, b'{"ok": true}')])
    result = WebhookClient().post_json(URL, {"event_id": 7}, headers={"X-Signature": "abc"})
    assert result == {"status": 200, "body": '{"ok": true}'}
    assert len(requests) == 2
    assert sleeps == [1.0]
    assert requests[0].get_header("Content-type") == "application/json"
    assert requests[0].get_header("X-signature") == "abc"
    assert requests[0].data == b'{"event_id": 7}'
    assert unavailable.fp.closed


def test_client_error_is_not_retried(monkeypatch, sleeps):
    requests = _serve(monkeypatch, [_http_error(400, b"bad payload"), _Response(200)])
    with pytest.raises(WebhookError, match="HTTP 400 from webhook: bad payload"):
        WebhookClient().post_json(URL, {})
    assert len(requests) == 1
    assert sleeps == []


def test_rate_limit_gives_up_after_retries(monkeypatch, sleeps):
    requests = _serve(monkeypatch, [_http_error(429), _http_error(429), _http_error(429)])
    with pytest.raises(WebhookError, match="failed after retries: Rate limited") as excinfo:
        WebhookClient().post_json(URL, {}, retries=2, backoff_seconds=2)
    assert not isinstance(excinfo.value, WebhookRateLimited)
    assert len(requests) == 3
    assert sleeps == [2, 4]


def test_connection_errors_are_retried(monkeypatch, sleeps):
    _serve(monkeypatch, [urllib.error.URLError("refused"), _Response(204)])
    assert WebhookClient().post_json(URL, {})["status"] == 204
    assert sleeps == [1.0]
