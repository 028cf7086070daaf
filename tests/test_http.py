import httpx
import pytest

from mdrun import mdrun_http
from mdrun.mdrun_http import dalibo_base_url, http_request, submit_plan


class DummyResp:
    def __init__(self, status, headers=None):
        self.status_code = status
        self.headers = headers or {}


def _client_returning(responses, seen):
    """Build an AsyncClient stand-in answering from a list (exceptions are raised)."""
    answers = iter(responses)

    class DummyAsyncClient:
        def __init__(self, *args, **kwargs):
            seen.setdefault("client_kwargs", kwargs)

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def request(self, method, url, headers=None, data=None):
            seen.setdefault("requests", []).append((method, url, data))
            answer = next(answers)
            if isinstance(answer, Exception):
                raise answer
            return answer

    return DummyAsyncClient


@pytest.mark.asyncio
async def test_submit_plan_returns_absolute_location(monkeypatch):
    seen = {}
    monkeypatch.setattr(mdrun_http.httpx, "AsyncClient",
                        _client_returning([DummyResp(302, {"location": "/plan/abc"})], seen))
    url = await submit_plan('[{"Plan": {}}]', query="SELECT 1;", title="t", base_url="https://viz.example")
    assert url == "https://viz.example/plan/abc"
    method, target, form = seen["requests"][0]
    assert method == "POST"
    assert target == "https://viz.example/new"
    assert form == {"title": "t", "plan": '[{"Plan": {}}]', "query": "SELECT 1;"}
    assert seen["client_kwargs"]["follow_redirects"] is False


@pytest.mark.asyncio
async def test_submit_plan_keeps_absolute_location(monkeypatch):
    seen = {}
    monkeypatch.setattr(mdrun_http.httpx, "AsyncClient",
                        _client_returning([DummyResp(303, {"location": "https://other/plan/9"})], seen))
    assert await submit_plan("[]", base_url="https://viz.example/") == "https://other/plan/9"


@pytest.mark.asyncio
async def test_submit_plan_non_redirect_is_no_link(monkeypatch):
    seen = {}
    monkeypatch.setattr(mdrun_http.httpx, "AsyncClient", _client_returning([DummyResp(500)], seen))
    assert await submit_plan("[]", base_url="https://viz.example") is None


@pytest.mark.asyncio
async def test_submit_plan_never_raises(monkeypatch):
    seen = {}
    failures = [httpx.ConnectError("down"), httpx.ConnectError("down")]
    monkeypatch.setattr(mdrun_http.httpx, "AsyncClient", _client_returning(failures, seen))
    url = await submit_plan("[]", base_url="https://viz.example", config={"retries": 1, "backoff": 0})
    assert url is None
    assert len(seen["requests"]) == 2


@pytest.mark.asyncio
async def test_http_request_retries_transport_errors(monkeypatch):
    seen = {}
    answers = [httpx.ReadTimeout("slow"), DummyResp(200)]
    monkeypatch.setattr(mdrun_http.httpx, "AsyncClient", _client_returning(answers, seen))
    resp = await http_request("post", "https://viz.example/new", config={"backoff": 0})
    assert resp.status_code == 200
    assert [r[0] for r in seen["requests"]] == ["POST", "POST"]


def test_dalibo_base_url_from_environment(monkeypatch):
    monkeypatch.delenv("MARKDOWN_RUN_DALIBO_URL", raising=False)
    assert dalibo_base_url() == "https://explain.dalibo.com"
    monkeypatch.setenv("MARKDOWN_RUN_DALIBO_URL", "http://localhost:8080/")
    assert dalibo_base_url() == "http://localhost:8080"
