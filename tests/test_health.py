import httpx
import pytest

from gro import health


@pytest.fixture
def serve(monkeypatch):
    real_client = httpx.Client

    def install(handler):
        def factory(*args, **kwargs):
            return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(health.httpx, "Client", factory)

    return install


def test_ready_on_healthy_payload(serve):
    serve(lambda req: httpx.Response(200, json={"status": "healthy"}))
    ok, msg, latency = health.check_ready("http://web:8080/health")
    assert ok is True
    assert msg == "Ready"
    assert latency is not None


def test_ready_on_plain_2xx(serve):
    serve(lambda req: httpx.Response(204))
    assert health.check_ready("http://web:8080/health")[0] is True


def test_not_ready_payload(serve):
    serve(lambda req: httpx.Response(200, json={"status": "starting"}))
    ok, msg, _ = health.check_ready("http://web:8080/health")
    assert ok is False
    assert "starting" in msg


def test_not_ready_on_http_error(serve):
    serve(lambda req: httpx.Response(503))
    assert health.check_ready("http://web:8080/health")[:2] == (False, "HTTP 503")


def test_not_ready_when_unreachable(serve):
    def refuse(req):
        raise httpx.ConnectError("refused", request=req)

    serve(refuse)
    assert health.check_ready("http://web:8080/health")[:2] == (False, "No response")
