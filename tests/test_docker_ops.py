from datetime import timezone

import pytest

from gro.docker_ops import _parse_started_at, container_http_base
from gro.store import cpu_to_nano, memory_to_bytes


@pytest.mark.parametrize("cpu,nano", [("250m", 250_000_000), ("1", 1_000_000_000), ("1.5", 1_500_000_000)])
def test_cpu_to_nano(cpu, nano):
    assert cpu_to_nano(cpu) == nano


@pytest.mark.parametrize("mem,size", [("128Mi", 128 * 1024**2), ("1Gi", 1024**3), ("500M", 500 * 1000**2), ("4096", 4096)])
def test_memory_to_bytes(mem, size):
    assert memory_to_bytes(mem) == size


def test_invalid_quantities():
    with pytest.raises(ValueError):
        cpu_to_nano("lots")
    with pytest.raises(ValueError):
        memory_to_bytes("12Tb")


def test_started_at_parsing():
    ts = _parse_started_at("2024-05-01T10:20:30.123456789Z")
    assert (ts.year, ts.microsecond, ts.tzinfo) == (2024, 123456, timezone.utc)
    assert _parse_started_at("0001-01-01T00:00:00Z").year > 2000


def test_container_http_base():
    assert container_http_base("gro-web-r3-abc", 8080) == "http://gro-web-r3-abc:8080"
