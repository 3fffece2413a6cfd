"""Tests for the Prometheus instrumentation of the engines."""
import pytest
from prometheus_client import REGISTRY

from aiquery import schema as s
from aiquery.adapters.mock import MockProvider
from aiquery.execution import ExecutionEngine
from aiquery.types import RequestSpec


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.asyncio
async def test_success_and_cache_hit_are_counted(fast_settings):
    engine = ExecutionEngine(MockProvider(), settings=fast_settings)
    spec = RequestSpec(task="Summarize metrics", schema=s.string())
    successes = sample("aiquery_requests_total", mode="single", outcome="success")
    hits = sample("aiquery_cache_hits_total")
    observed = sample("aiquery_attempt_duration_ms_count", mode="single")

    await engine.execute(spec)
    await engine.execute(spec)

    assert sample("aiquery_requests_total", mode="single", outcome="success") == successes + 1
    assert sample("aiquery_cache_hits_total") == hits + 1
    assert sample("aiquery_attempt_duration_ms_count", mode="single") == observed + 1
