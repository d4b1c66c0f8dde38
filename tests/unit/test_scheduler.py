#!/usr/bin/env python3
#
# tests/unit/test_scheduler.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import asyncio

import pytest

from certcluster.utils.scheduler import Scheduler


def test_add_validates_jobs():
	scheduler = Scheduler()

	async def job():
		return None

	scheduler.add("renewal", 60, job)
	with pytest.raises(ValueError):
		scheduler.add("renewal", 60, job)
	with pytest.raises(ValueError):
		scheduler.add("too-fast", 0.5, job)


@pytest.mark.asyncio
async def test_run_on_start_and_status():
	scheduler = Scheduler()
	ran = asyncio.Event()

	async def job():
		ran.set()

	scheduler.add("renewal", 3600, job, run_on_start=True)
	await scheduler.start()
	try:
		await asyncio.wait_for(ran.wait(), timeout=2.0)
		with pytest.raises(RuntimeError):
			scheduler.add("late", 60, job)
	finally:
		await scheduler.stop_graceful(timeout=1.0)

	status = scheduler.get_status()[0]
	assert status["name"] == "renewal"
	assert status["run_count"] == 1
	assert status["fail_count"] == 0
	assert status["last_success"] is not None
	assert scheduler.running is False


@pytest.mark.asyncio
async def test_failures_are_counted_not_raised():
	scheduler = Scheduler()

	async def job():
		raise RuntimeError("store unavailable")

	scheduler.add("renewal", 3600, job)
	assert await scheduler.run_now("renewal") is False
	assert scheduler.get_status()[0]["fail_count"] == 1
	with pytest.raises(KeyError):
		await scheduler.run_now("missing")

