#!/usr/bin/env python3
#
# certcluster/orchestrator.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate lifecycle orchestration.

Two independent triggers move a domain through its lifecycle:

* the record-store change feed: a freshly registered domain is claimed by the
  challenge leader and issued in the background, behind the retry policy;
* the renewal timer: every 12 hours, records whose ``renewal_date`` has passed
  are re-issued in renewal mode, one direct attempt each.

Only one worker per node runs an orchestrator (see ``db.sqlite_leader``).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from .cluster.leader import LeaderElector
from .db.records import SqliteRecordStore
from .issuer import CertificateIssuer
from .models.records import ChangeEvent, Condition
from .utils.retry import (
	DEFAULT_BASE_DELAY,
	DEFAULT_MAX_ATTEMPTS,
	DEFAULT_STAGGER_STEP,
	RetryExhaustedError,
	stagger_delay,
	with_retry,
)
from .utils.scheduler import Scheduler
from .utils.time import utcnow

_log = logging.getLogger(__name__)

__all__ = ["LifecycleOrchestrator"]

RENEWAL_INTERVAL = 43200.0  # 12 h
RESTART_DELAY = 5.0
FEED_PRUNE_INTERVAL = 3600.0
FEED_RETENTION = timedelta(days=7)


class LifecycleOrchestrator:
	"""Subscribes to new domains, launches issuance and runs the renewal scan."""

	def __init__(
		self,
		store: SqliteRecordStore,
		issuer: CertificateIssuer,
		elector: LeaderElector,
		*,
		scheduler: Scheduler | None = None,
		renewal_interval: float = RENEWAL_INTERVAL,
		restart_delay: float = RESTART_DELAY,
		stagger_step: float = DEFAULT_STAGGER_STEP,
		retry_attempts: int = DEFAULT_MAX_ATTEMPTS,
		retry_base_delay: float = DEFAULT_BASE_DELAY,
		feed_retention: timedelta = FEED_RETENTION,
		clock: Callable[[], datetime] = utcnow,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		self.store = store
		self.issuer = issuer
		self.elector = elector
		self.restart_delay = restart_delay
		self.stagger_step = stagger_step
		self.retry_attempts = retry_attempts
		self.retry_base_delay = retry_base_delay
		self.feed_retention = feed_retention
		self.clock = clock
		self._sleep = sleep

		self.scheduler = scheduler or Scheduler()
		self.scheduler.add("certificate-renewal", renewal_interval, self.scan_renewals)
		self.scheduler.add("change-feed-prune", FEED_PRUNE_INTERVAL, self.prune_feed, run_on_start=True)

		# Strong references: the event loop only keeps weak ones to tasks
		self._issuing: dict[str, asyncio.Task] = {}
		self._renewing: set[str] = set()
		self._feed_task: asyncio.Task | None = None
		self._last_seq: int | None = None

	@property
	def in_flight(self) -> list[str]:
		return sorted(set(self._issuing) | self._renewing)

	@property
	def last_seq(self) -> int | None:
		return self._last_seq

	# ─────────────────────────────────────────────────────────────────────
	# Lifecycle
	# ─────────────────────────────────────────────────────────────────────

	async def start(self) -> None:
		if self._feed_task is not None:
			return
		self._last_seq = await self.store.feed_head()
		self._feed_task = asyncio.create_task(self._supervise_feed(), name="change-feed")
		await self.scheduler.start()
		_log.info("ORCHESTRATOR started host=%s feed_seq=%d", self.elector.hostname, self._last_seq)

	async def stop(self) -> None:
		await self.scheduler.stop_graceful()

		if self._feed_task is not None:
			self._feed_task.cancel()
			await asyncio.gather(self._feed_task, return_exceptions=True)
			self._feed_task = None

		# Only at process shutdown: in-flight issuance is otherwise never aborted
		pending = list(self._issuing.values())
		if pending:
			_log.warning("ORCHESTRATOR abandoning %d in-flight issuance(s): %s", len(pending), ", ".join(self._issuing))
			for task in pending:
				task.cancel()
			await asyncio.gather(*pending, return_exceptions=True)
		_log.info("ORCHESTRATOR stopped")

	# ─────────────────────────────────────────────────────────────────────
	# New-domain trigger
	# ─────────────────────────────────────────────────────────────────────

	async def handle_event(self, event: ChangeEvent) -> bool:
		"""Start issuance for a freshly registered domain; True if it was launched.

		Safe against duplicate delivery: the record is re-read and must still
		be fresh, and the ``in_progress`` flip is a compare-and-swap.
		"""
		record = event.value
		if not record.is_fresh:
			return False

		election = await self.elector.elect()
		if not election.is_leader:
			_log.debug("FEED skip domain=%s: not leader (leader=%s)", record.domain, election.leader_name)
			return False

		current = await self.store.get(record.domain)
		if current is None or not current.is_fresh or record.domain in self._issuing:
			return False
		if not await self.store.claim(record.domain):
			_log.debug("FEED skip domain=%s: already claimed", record.domain)
			return False

		delay = stagger_delay(election.total_nodes, self.stagger_step)
		self._launch(record.domain, delay)
		return True

	def _launch(self, domain: str, initial_delay: float) -> None:
		task = asyncio.create_task(self._run_issuance(domain, initial_delay), name=f"issue-{domain}")
		self._issuing[domain] = task

		def _done(t: asyncio.Task) -> None:
			if self._issuing.get(domain) is t:
				del self._issuing[domain]
			if not t.cancelled() and t.exception() is not None:
				_log.error("ISSUE task crashed domain=%s", domain, exc_info=t.exception())

		task.add_done_callback(_done)
		_log.info("ISSUE launched domain=%s stagger=%.0fs", domain, initial_delay)

	async def _run_issuance(self, domain: str, initial_delay: float) -> None:
		try:
			await with_retry(
				lambda: self.issuer.issue(domain),
				max_attempts=self.retry_attempts,
				base_delay=self.retry_base_delay,
				initial_delay=initial_delay,
				description=f"issue {domain}",
				sleep=self._sleep,
			)
		except RetryExhaustedError as exc:
			_log.error(
				"ISSUE gave up domain=%s after %d attempts; record stays in progress until reset",
				domain, exc.attempts,
			)

	async def _catch_up(self) -> int:
		"""Treat fresh records that predate this subscription like new events."""
		launched = 0
		async for record in self.store.search(
			Condition("in_progress", "equal", False),
			Condition("issue_date", "equal", None),
			Condition("challenge_token", "equal", None),
		):
			if await self.handle_event(ChangeEvent(seq=0, value=record)):
				launched += 1
		if launched:
			_log.info("FEED catch-up launched %d pending domain(s)", launched)
		return launched

	async def _supervise_feed(self) -> None:
		caught_up = False
		while True:
			try:
				if not caught_up:
					await self._catch_up()
					caught_up = True
				async for event in self.store.subscribe(since=self._last_seq):
					self._last_seq = event.seq
					try:
						await self.handle_event(event)
					except asyncio.CancelledError:
						raise
					except Exception:
						_log.exception("FEED error processing event seq=%d domain=%s", event.seq, event.value.domain)
				_log.warning("FEED subscription ended, restarting in %.0fs", self.restart_delay)
			except asyncio.CancelledError:
				raise
			except Exception:
				_log.exception("FEED subscription crashed, restarting in %.0fs", self.restart_delay)
			await self._sleep(self.restart_delay)

	# ─────────────────────────────────────────────────────────────────────
	# Renewal trigger
	# ─────────────────────────────────────────────────────────────────────

	async def scan_renewals(self) -> int:
		"""Renew every record whose ``renewal_date`` has passed; returns attempts made."""
		now = self.clock()
		attempted = 0
		async for record in self.store.search(Condition("renewal_date", "less_than", now)):
			domain = record.domain
			if domain in self._issuing or domain in self._renewing:
				continue
			if record.renewal_date is None:
				# Stored value could not be read back as a timestamp
				_log.warning("RENEWAL skip domain=%s: unreadable renewal_date", domain)
				continue
			election = await self.elector.elect()
			if not election.is_leader:
				_log.debug("RENEWAL skip domain=%s: not leader", domain)
				continue

			await self.store.patch(domain, in_progress=True)
			attempted += 1
			self._renewing.add(domain)
			try:
				await self.issuer.issue(domain, renewal=True)
			except asyncio.CancelledError:
				raise
			except Exception:
				_log.warning("RENEWAL failed domain=%s; next scan retries", domain)
			finally:
				self._renewing.discard(domain)

		_log.info("RENEWAL scan complete due_attempted=%d", attempted)
		return attempted

	async def prune_feed(self) -> int:
		return await self.store.prune_changes(self.feed_retention)
