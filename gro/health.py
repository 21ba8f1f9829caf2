from __future__ import annotations

import time

import httpx


READY_STATUSES = {"healthy", "ok", "ready", "up"}


def check_ready(url: str, timeout_s: float = 2.0) -> tuple[bool, str, float | None]:
    """Call a replica's readiness endpoint.

    Any 2xx counts as ready unless the body is a JSON object whose ``status``
    field says otherwise.
    Returns (is_ready, message, latency_ms).
    """
    start = time.time()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False) as client:
            resp = client.get(url)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if not 200 <= resp.status_code < 300:
            return False, f"HTTP {resp.status_code}", latency_ms
        try:
            data = resp.json()
        except ValueError:
            return True, "Ready", latency_ms
        if isinstance(data, dict) and "status" in data:
            if str(data["status"]).lower() in READY_STATUSES:
                return True, "Ready", latency_ms
            return False, f"Not ready payload: {data!r}", latency_ms
        return True, "Ready", latency_ms
    except (httpx.ConnectError, httpx.TimeoutException):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, "No response", latency_ms
    except httpx.HTTPError as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, f"Error: {type(e).__name__}: {e}", latency_ms
