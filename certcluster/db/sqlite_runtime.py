#!/usr/bin/env python3
#
# certcluster/db/sqlite_runtime.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Connection setup shared by the async record store and the sync bootstrap path.

Timestamps are stored as fixed-width UTC text so that SQL comparisons such as
``renewal_date < ?`` order the same way the datetimes do.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from ..utils.time import parse_utc

_log = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 30.0
WAL_ATTEMPTS = 5

_DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _to_db_time(value: datetime) -> str:
	if value.tzinfo is None:
		raise ValueError(f"Refusing to store naive datetime {value!r}")
	return value.astimezone(timezone.utc).strftime(_DB_TIME_FORMAT)


def _from_db_time(raw: bytes) -> datetime | None:
	text = raw.decode("utf-8", errors="replace")
	try:
		return datetime.strptime(text, _DB_TIME_FORMAT).replace(tzinfo=timezone.utc)
	except ValueError:
		pass
	# Rows written by hand or by older builds
	parsed = parse_utc(text)
	if parsed is None:
		_log.error("DB unreadable timestamp %r, reading it as NULL", text)
	return parsed


# Process-global; aiosqlite wraps sqlite3 so its connections see these too
sqlite3.register_adapter(datetime, _to_db_time)
sqlite3.register_converter("timestamp", _from_db_time)


def enable_wal(conn: sqlite3.Connection) -> None:
	"""Put the database in WAL mode, backing off while a sibling worker holds it."""
	delay = 0.1
	for attempt in range(1, WAL_ATTEMPTS + 1):
		try:
			(mode,) = conn.execute("PRAGMA journal_mode").fetchone()
			if mode.lower() != "wal":
				conn.execute("PRAGMA journal_mode=WAL")
				_log.debug("DB journal switched to WAL")
			return
		except sqlite3.OperationalError as exc:
			if "locked" not in str(exc).lower() or attempt == WAL_ATTEMPTS:
				raise
			_log.debug("DB locked while enabling WAL (%d/%d), waiting %.1fs", attempt, WAL_ATTEMPTS, delay)
			time.sleep(delay)
			delay *= 2


def connect(db_path: Path) -> sqlite3.Connection:
	"""Open a blocking connection, used before the event loop owns the store."""
	db_path.parent.mkdir(parents=True, exist_ok=True)
	conn = sqlite3.connect(
		str(db_path),
		timeout=BUSY_TIMEOUT_SECONDS,
		detect_types=sqlite3.PARSE_DECLTYPES,
		check_same_thread=False,
	)
	conn.row_factory = sqlite3.Row
	enable_wal(conn)
	return conn


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
	"""Commit on success, roll back on error. Nested use joins the outer transaction."""
	if conn.in_transaction:
		yield conn
		return

	conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
	try:
		yield conn
	except BaseException:
		if conn.in_transaction:
			conn.rollback()
		raise
	conn.commit()
