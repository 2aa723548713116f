from __future__ import annotations

from typing import Any, Iterable, Optional

import pytest
import requests

from sep_rag.clients.base import (
    DETAIL_LIMIT,
    BaseHttpClient,
    ClientError,
    NotFoundError,
    ServiceError,
    error_detail,
    retry_after_seconds,
)


class _StubSession:
    def __init__(self, responses: Iterable[Any]):
        self._responses = list(responses)
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []

    def request(self, method: str, url: str, timeout: float = 0, **_: Any):
        self.calls.append((method, url))
        outcome = self._responses[min(len(self.calls), len(self._responses)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _ModelClient(BaseHttpClient):
    BASE_URL = "https://models.test/v4"

    def __init__(self, responses: Iterable[Any]):
        super().__init__(session=_StubSession(responses))

    @property
    def stub_session(self) -> _StubSession:
        return self.session  # type: ignore[return-value]


def _make_response(status: int, body: str = "", headers: Optional[dict[str, str]] = None):
    response = requests.Response()
    response.status_code = status
    response._content = body.encode()
    response.url = "https://models.test/v4/run"
    response.headers.update(headers or {})
    response.encoding = "utf-8"
    return response


def test_error_detail_joins_cloudflare_error_messages():
    response = _make_response(
        400,
        '{"success": false, "errors": [{"code": 5006, "message": "AiError:  Max context\\nreached"},'
        ' {"message": "retry with fewer texts"}]}',
    )

    assert error_detail(response) == "AiError: Max context reached; retry with fewer texts"


def test_error_detail_falls_back_to_collapsed_body_text():
    response = _make_response(502, "<html>\n  Bad   gateway\n</html>" + " x" * DETAIL_LIMIT)

    detail = error_detail(response)

    assert detail is not None
    assert detail.startswith("<html> Bad gateway </html>")
    assert len(detail) == DETAIL_LIMIT


def test_error_detail_is_none_for_empty_body():
    assert error_detail(_make_response(400)) is None
    assert error_detail(_make_response(400, '{"errors": []}')) == '{"errors": []}'


def test_rejection_carries_detail_and_can_be_searched_for_markers():
    client = _ModelClient([_make_response(413, '{"errors": [{"message": "Max Context Reached"}]}')])

    with pytest.raises(ServiceError) as excinfo:
        client._request("POST", "/run/embed", json={"text": ["long"]})

    error = excinfo.value
    assert error.status == 413
    assert error.body_excerpt == "Max Context Reached"
    assert error.mentions("max context reached")
    assert not error.mentions("quota")
    assert str(error) == "https://models.test/v4/run/embed answered 413: Max Context Reached"
    assert len(client.stub_session.calls) == 1


def test_transient_status_is_retried_and_then_surfaces_its_detail():
    overloaded = _make_response(503, "model overloaded", headers={"Retry-After": "0"})
    client = _ModelClient([overloaded, overloaded, overloaded])

    with pytest.raises(ServiceError) as excinfo:
        client._request("POST", "/run/rerank")

    assert excinfo.value.status == 503
    assert excinfo.value.body_excerpt == "model overloaded"
    assert len(client.stub_session.calls) == 3


def test_transient_status_then_success_returns_response():
    client = _ModelClient(
        [_make_response(429, headers={"Retry-After": "0"}), _make_response(200, '{"result": {}}')]
    )

    response = client._request("GET", "/entries/logic/")

    assert response.json() == {"result": {}}
    assert len(client.stub_session.calls) == 2


def test_missing_page_is_not_retried():
    client = _ModelClient([_make_response(404, "no such entry")])

    with pytest.raises(NotFoundError):
        client._request("GET", "https://plato.test/entries/nothing/")

    assert client.stub_session.calls == [("GET", "https://plato.test/entries/nothing/")]


def test_connection_failures_become_client_errors(monkeypatch):
    monkeypatch.setattr("sep_rag.clients.base._backoff", lambda retry_state: 0)
    failure = requests.ConnectionError("connection refused")
    client = _ModelClient([failure, failure, failure])

    with pytest.raises(ClientError) as excinfo:
        client._request("GET", "/entries/logic/")

    assert not isinstance(excinfo.value, ServiceError)
    assert "connection refused" in str(excinfo.value)
    assert len(client.stub_session.calls) == 3


def test_user_agent_is_set_without_overriding_existing_one():
    client = _ModelClient([])
    assert client.stub_session.headers["User-Agent"] == "sep-rag"

    session = requests.Session()
    session.headers["User-Agent"] = "custom"
    assert BaseHttpClient(session=session).session.headers["User-Agent"] == "custom"


def test_retry_after_accepts_seconds_and_dates():
    assert retry_after_seconds("7") == 7.0
    assert retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
    assert retry_after_seconds("soon") is None
    assert retry_after_seconds(None) is None
