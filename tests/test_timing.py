"""Tests for the latency floor."""

from __future__ import annotations

import asyncio

import pytest

from pipeline_wizard.timing import wait_at_least


async def _value(v, delay: float = 0.0):
    await asyncio.sleep(delay)
    return v


async def _fail():
    raise ValueError("boom")


async def test_fast_call_waits_for_floor():
    loop = asyncio.get_running_loop()
    started = loop.time()

    result = await wait_at_least(_value("ok"), 0.05)

    assert result == "ok"
    assert loop.time() - started >= 0.045


async def test_slow_call_not_delayed_further():
    loop = asyncio.get_running_loop()
    started = loop.time()

    await wait_at_least(_value("ok", 0.05), 0.01)

    assert loop.time() - started < 0.5


async def test_failure_propagates_immediately():
    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(ValueError):
        await wait_at_least(_fail(), 5.0)

    assert loop.time() - started < 1.0
