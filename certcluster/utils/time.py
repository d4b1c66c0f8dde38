#!/usr/bin/env python3
#
# certcluster/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""UTC helpers. Every datetime that crosses a module boundary is timezone-aware."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def format_utc(dt: Optional[datetime]) -> Optional[str]:
	"""ISO-8601 in UTC with a trailing ``Z``; None stays None.

	Raises:
		ValueError: On a naive datetime
	"""
	if dt is None:
		return None
	if dt.tzinfo is None:
		raise ValueError(f"Cannot format naive datetime {dt!r} as UTC")
	return f"{dt.astimezone(timezone.utc).isoformat()[:-6]}Z"


def parse_utc(value: Optional[str]) -> Optional[datetime]:
	"""Inverse of :func:`format_utc`. Accepts ``Z`` or an explicit offset.

	Empty, malformed and offset-less strings all yield None.
	"""
	if not value:
		return None
	text = f"{value[:-1]}+00:00" if value.endswith("Z") else value
	try:
		parsed = datetime.fromisoformat(text)
	except (TypeError, ValueError):
		return None
	if parsed.utcoffset() is None:
		return None
	return parsed.astimezone(timezone.utc)
