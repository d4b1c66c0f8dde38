#!/usr/bin/env python3
#
# certcluster/utils/scheduler.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Fixed-interval coroutine jobs for the designated worker.

Hosts the renewal scan, change-feed pruning and the worker-lock heartbeat.
A job that raises is logged and counted; its loop carries on at the next slot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypedDict

from .time import format_utc, utcnow

_log = logging.getLogger(__name__)

__all__ = ["Scheduler", "JobStatus"]

# Shortest interval accepted; guards against a busy loop from a bad setting
MIN_INTERVAL_SECONDS = 1.0

JobFunc = Callable[[], Awaitable[object]]


class JobStatus(TypedDict):
	name: str
	interval_seconds: float
	last_success: Optional[str]
	last_attempt: Optional[str]
	is_running: bool
	run_count: int
	fail_count: int


@dataclass
class _Job:
	name: str
	interval: float
	func: JobFunc
	run_on_start: bool = False
	task: Optional[asyncio.Task] = field(default=None, repr=False)
	last_attempt: Optional[datetime] = None
	last_success: Optional[datetime] = None
	run_count: int = 0
	fail_count: int = 0

	def status(self) -> JobStatus:
		return {
			"name": self.name,
			"interval_seconds": self.interval,
			"last_success": format_utc(self.last_success),
			"last_attempt": format_utc(self.last_attempt),
			"is_running": self.task is not None and not self.task.done(),
			"run_count": self.run_count,
			"fail_count": self.fail_count,
		}


class Scheduler:
	"""Runs each registered coroutine every ``interval`` seconds until stopped.

	Jobs are registered before ``start()``; a slot missed because the previous
	run overran is skipped rather than caught up.
	"""

	def __init__(self) -> None:
		self._jobs: dict[str, _Job] = {}
		self._stopping: Optional[asyncio.Event] = None

	@property
	def running(self) -> bool:
		return self._stopping is not None

	def add(self, name: str, interval_seconds: float, func: JobFunc, *, run_on_start: bool = False) -> None:
		"""Register ``func`` under ``name``.

		Raises:
			RuntimeError: If the scheduler has already been started
			ValueError: On a duplicate name or an interval below one second
		"""
		if self.running:
			raise RuntimeError(f"Scheduler already running, cannot add {name!r}")
		if name in self._jobs:
			raise ValueError(f"Duplicate job name {name!r}")
		if interval_seconds < MIN_INTERVAL_SECONDS:
			raise ValueError(f"Interval for {name!r} must be at least {MIN_INTERVAL_SECONDS}s, got {interval_seconds}")
		self._jobs[name] = _Job(name, float(interval_seconds), func, run_on_start)

	async def start(self) -> None:
		if self.running:
			return
		self._stopping = asyncio.Event()
		for job in self._jobs.values():
			job.task = asyncio.create_task(self._loop(job, self._stopping), name=f"job-{job.name}")
		_log.info("SCHEDULER started jobs=%s", ",".join(self._jobs) or "-")

	async def stop_graceful(self, timeout: float = 5.0) -> None:
		"""Ask every loop to finish; cancel the ones still busy after ``timeout``."""
		stopping, self._stopping = self._stopping, None
		if stopping is None:
			return
		stopping.set()

		tasks = [job.task for job in self._jobs.values() if job.task is not None and not job.task.done()]
		if tasks:
			_, stuck = await asyncio.wait(tasks, timeout=timeout)
			for task in stuck:
				task.cancel()
			if stuck:
				_log.warning("SCHEDULER cancelled %d job(s) still running at shutdown", len(stuck))
				await asyncio.gather(*stuck, return_exceptions=True)
		_log.info("SCHEDULER stopped")

	async def _loop(self, job: _Job, stopping: asyncio.Event) -> None:
		loop = asyncio.get_running_loop()
		due = loop.time() + (0.0 if job.run_on_start else job.interval)
		while True:
			try:
				await asyncio.wait_for(stopping.wait(), timeout=max(0.0, due - loop.time()))
				return
			except asyncio.TimeoutError:
				pass

			await self._execute(job)

			due += job.interval
			behind = loop.time() - due
			if behind >= 0:
				missed = int(behind // job.interval) + 1
				due += missed * job.interval
				_log.warning("SCHEDULER job=%s overran, skipping %d slot(s)", job.name, missed)

	async def _execute(self, job: _Job) -> bool:
		job.last_attempt = utcnow()
		try:
			await job.func()
		except asyncio.CancelledError:
			raise
		except Exception:
			job.fail_count += 1
			_log.exception("SCHEDULER job=%s raised (failures=%d)", job.name, job.fail_count)
			return False
		job.last_success = job.last_attempt
		job.run_count += 1
		_log.debug("SCHEDULER job=%s done (runs=%d)", job.name, job.run_count)
		return True

	async def run_now(self, name: str) -> bool:
		"""Run a job once, outside its schedule; returns whether it succeeded."""
		try:
			job = self._jobs[name]
		except KeyError:
			raise KeyError(f"Unknown job {name!r}") from None
		return await self._execute(job)

	def get_status(self) -> list[JobStatus]:
		return [job.status() for job in self._jobs.values()]
