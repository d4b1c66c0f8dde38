#!/usr/bin/env python3
#
# certcluster/db/sqlite_leader.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Designated-worker lock: exactly one worker process per node runs the coordinator.

The lock table lives in the shared database but holds one row per node name,
so workers on different nodes never compete for the same row. A row's PID is
only ever compared against processes of the node that wrote it.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from datetime import timedelta

from ..utils.time import utcnow

_log = logging.getLogger(__name__)

# A lock not refreshed for this long is considered abandoned
STALE_AFTER = timedelta(seconds=60)
HEARTBEAT_INTERVAL_SECONDS = 20.0


def _owner_is_gone(owner_pid: int, pid: int) -> bool:
	if owner_pid <= 0 or owner_pid == pid:
		return False
	try:
		os.kill(owner_pid, 0)
	except ProcessLookupError:
		return True
	except PermissionError:
		# Alive, but owned by another user
		return False
	return False


def try_acquire_worker_lock(conn: sqlite3.Connection, node: str) -> bool:
	"""Attempt to become the designated worker of ``node``.

	Returns True if this process now holds the node's lock (and should start
	the change-feed subscription and renewal timer). The lock is taken over
	when its owner PID no longer exists on this node or it has not been
	refreshed within ``STALE_AFTER``.
	"""
	pid = os.getpid()
	now = utcnow()
	started_tx = False

	try:
		if not conn.in_transaction:
			conn.execute("BEGIN IMMEDIATE")
			started_tx = True

		row = conn.execute("SELECT pid FROM worker_lock WHERE node = ?", (node,)).fetchone()
		takeover = 0
		if row is not None:
			try:
				owner_pid = int(row["pid"])
			except (TypeError, ValueError):
				owner_pid = -1
			takeover = 1 if _owner_is_gone(owner_pid, pid) else 0

		conn.execute(
			"""
			INSERT INTO worker_lock (node, pid, acquired_at)
			VALUES (?, ?, ?)
			ON CONFLICT(node) DO UPDATE SET pid = excluded.pid, acquired_at = excluded.acquired_at
			WHERE pid = ? OR acquired_at < ? OR ? = 1
			""",
			(node, pid, now, pid, now - STALE_AFTER, takeover),
		)

		row = conn.execute("SELECT pid FROM worker_lock WHERE node = ?", (node,)).fetchone()
		held = row is not None and row["pid"] == pid
		if started_tx:
			conn.commit()
		return held
	except sqlite3.Error as e:
		if started_tx and conn.in_transaction:
			conn.rollback()
		_log.warning("WORKER_LOCK acquire failed node=%s: %s", node, e)
		return False


def refresh_worker_lock(conn: sqlite3.Connection, node: str) -> bool:
	"""Heartbeat: bump ``acquired_at`` if this process still holds ``node``'s lock."""
	pid = os.getpid()
	try:
		cur = conn.execute(
			"UPDATE worker_lock SET acquired_at = ? WHERE node = ? AND pid = ?",
			(utcnow(), node, pid),
		)
		conn.commit()
	except sqlite3.Error as e:
		_log.warning("WORKER_LOCK refresh failed node=%s: %s", node, e)
		return False
	if cur.rowcount != 1:
		_log.error("WORKER_LOCK lost node=%s pid=%d", node, pid)
		return False
	return True


def release_worker_lock(conn: sqlite3.Connection, node: str) -> bool:
	"""Drop ``node``'s lock if this process holds it."""
	pid = os.getpid()
	try:
		conn.execute("DELETE FROM worker_lock WHERE node = ? AND pid = ?", (node, pid))
		conn.commit()
		return True
	except sqlite3.Error as e:
		_log.warning("WORKER_LOCK release failed node=%s: %s", node, e)
		return False
