"""Tests for phase timers and the retry budget."""

from __future__ import annotations

import asyncio

import pytest

from renacer.ritual.models import PhaseSpec
from renacer.ritual.retry_policy import RetryBudget
from renacer.ritual.timers import AsyncioTimeoutScheduler, PhaseTimer


def test_rearming_cancels_previous_handle(scheduler):
    timer = PhaseTimer(scheduler)
    fired = []
    timer.arm(10, lambda: fired.append("first"))
    timer.arm(20, lambda: fired.append("second"))

    assert scheduler.handles[0].cancelled
    scheduler.fire_pending()

    assert fired == ["second"]
    assert not timer.armed


def test_stale_handle_never_fires(scheduler):
    timer = PhaseTimer(scheduler)
    fired = []
    timer.arm(10, lambda: fired.append("x"))
    handle = scheduler.handles[0]
    timer.cancel()

    handle.callback()

    assert fired == []


@pytest.mark.asyncio
async def test_asyncio_scheduler_fires_callback():
    fired = asyncio.Event()
    timer = PhaseTimer(AsyncioTimeoutScheduler())
    timer.arm(0.01, fired.set)
    await asyncio.wait_for(fired.wait(), timeout=1)
    assert not timer.armed


@pytest.mark.asyncio
async def test_asyncio_scheduler_cancel():
    fired = []
    timer = PhaseTimer(AsyncioTimeoutScheduler())
    timer.arm(0.01, lambda: fired.append(1))
    timer.cancel()
    await asyncio.sleep(0.03)
    assert fired == []


def test_retry_budget_allows_max_retries_plus_one_attempts():
    phase = PhaseSpec(id="p", required_anchors=("a",), min_anchor_matches=1, max_retries=2)
    budget = RetryBudget()

    assert budget.attempts("p") == 1
    assert budget.record_failure(phase)
    assert budget.record_failure(phase)
    assert budget.remaining(phase) == 0
    assert not budget.record_failure(phase)
    assert budget.attempts("p") == 4


def test_zero_retries_gives_up_immediately():
    phase = PhaseSpec(id="p", required_anchors=("a",), min_anchor_matches=1, max_retries=0)
    assert not RetryBudget().record_failure(phase)
