#!/usr/bin/env python3
#
# tests/unit/test_retry.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import asyncio

import pytest

from certcluster.utils.retry import RetryExhaustedError, backoff_schedule, stagger_delay, with_retry


class _Sleeps:
	def __init__(self):
		self.delays: list[float] = []

	async def __call__(self, delay: float) -> None:
		self.delays.append(delay)


def test_backoff_schedule_doubles_from_two_minutes():
	assert backoff_schedule() == [120.0, 240.0, 480.0, 960.0, 1920.0]


@pytest.mark.parametrize("nodes, expected", [(0, 0.0), (1, 0.0), (2, 60.0), (4, 180.0)])
def test_stagger_delay(nodes, expected):
	assert stagger_delay(nodes) == expected


@pytest.mark.asyncio
async def test_success_after_transient_failures():
	sleeps = _Sleeps()
	outcomes = [RuntimeError("503"), RuntimeError("timeout"), "issued"]

	async def operation():
		outcome = outcomes.pop(0)
		if isinstance(outcome, Exception):
			raise outcome
		return outcome

	assert await with_retry(operation, sleep=sleeps) == "issued"
	assert sleeps.delays == [120.0, 240.0]


@pytest.mark.asyncio
async def test_exhaustion_after_six_attempts_with_full_schedule():
	sleeps = _Sleeps()
	calls = 0

	async def operation():
		nonlocal calls
		calls += 1
		raise ValueError(f"failure {calls}")

	with pytest.raises(RetryExhaustedError) as excinfo:
		await with_retry(operation, initial_delay=60.0, description="issue example.com", sleep=sleeps)

	assert calls == 6
	assert sleeps.delays == [60.0, 120.0, 240.0, 480.0, 960.0, 1920.0]
	assert excinfo.value.attempts == 6
	assert str(excinfo.value.last_error) == "failure 6"
	assert isinstance(excinfo.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_cancellation_is_not_retried():
	sleeps = _Sleeps()

	async def operation():
		raise asyncio.CancelledError()

	with pytest.raises(asyncio.CancelledError):
		await with_retry(operation, sleep=sleeps)
	assert sleeps.delays == []


@pytest.mark.asyncio
async def test_negative_arguments_rejected():
	async def operation():
		return None

	with pytest.raises(ValueError):
		await with_retry(operation, max_attempts=-1)
	with pytest.raises(ValueError):
		await with_retry(operation, initial_delay=-1.0)
