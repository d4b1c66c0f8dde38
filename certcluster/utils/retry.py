#!/usr/bin/env python3
#
# certcluster/utils/retry.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Bounded exponential-backoff retry for async operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

_log = logging.getLogger(__name__)

__all__ = ["RetryExhaustedError", "with_retry", "stagger_delay", "backoff_schedule"]

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 120.0  # 2 minutes
DEFAULT_STAGGER_STEP = 60.0


class RetryExhaustedError(Exception):
	"""Raised when every attempt of a retried operation has failed."""

	def __init__(self, description: str, attempts: int, last_error: BaseException):
		super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
		self.description = description
		self.attempts = attempts
		self.last_error = last_error


def backoff_schedule(max_attempts: int = DEFAULT_MAX_ATTEMPTS, base_delay: float = DEFAULT_BASE_DELAY) -> list[float]:
	"""Delays slept between consecutive attempts (one per retry)."""
	return [base_delay * (2 ** attempt) for attempt in range(max_attempts)]


def stagger_delay(total_nodes: int, step: float = DEFAULT_STAGGER_STEP) -> float:
	"""Start delay for freshly joined nodes: ``(total_nodes - 1) * step``, never negative."""
	return max(total_nodes - 1, 0) * step


async def with_retry(
	operation: Callable[[], Awaitable[T]],
	*,
	max_attempts: int = DEFAULT_MAX_ATTEMPTS,
	base_delay: float = DEFAULT_BASE_DELAY,
	initial_delay: float = 0.0,
	description: str = "operation",
	sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
	"""Run ``operation`` with up to ``max_attempts`` retries after the first try.

	Args:
		operation: Zero-argument coroutine factory, called once per attempt
		max_attempts: Number of retries (total tries = max_attempts + 1)
		base_delay: Seconds slept after the first failure; doubles every retry
		initial_delay: Seconds slept before the first attempt
		description: Label used in log lines and the exhaustion error
		sleep: Awaitable sleep, injectable for tests

	Returns:
		The result of the first successful attempt.

	Raises:
		RetryExhaustedError: If every attempt failed (chained from the last error)
		ValueError: If max_attempts or a delay is negative
	"""
	if max_attempts < 0:
		raise ValueError(f"max_attempts must be ≥ 0, got {max_attempts}")
	if base_delay < 0 or initial_delay < 0:
		raise ValueError("delays must be ≥ 0")

	if initial_delay > 0:
		_log.debug("RETRY %s waiting %.1fs before first attempt", description, initial_delay)
		await sleep(initial_delay)

	total = max_attempts + 1
	last_error: Exception | None = None
	for attempt in range(total):
		try:
			return await operation()
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			last_error = exc
			if attempt < max_attempts:
				delay = base_delay * (2 ** attempt)
				_log.warning(
					"RETRY %s attempt %d/%d failed, retrying in %.0fs: %s",
					description, attempt + 1, total, delay, exc,
				)
				await sleep(delay)

	assert last_error is not None
	_log.error(
		"RETRY %s failed after %d attempts",
		description, total,
		exc_info=(type(last_error), last_error, last_error.__traceback__),
	)
	raise RetryExhaustedError(description, total, last_error) from last_error
