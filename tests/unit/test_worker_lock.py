#!/usr/bin/env python3
#
# tests/unit/test_worker_lock.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import os
from datetime import timedelta

import pytest

from certcluster.db.sqlite_leader import (
	STALE_AFTER,
	refresh_worker_lock,
	release_worker_lock,
	try_acquire_worker_lock,
)
from certcluster.db.sqlite_runtime import connect, transaction
from certcluster.db.sqlite_schema import init_schema
from certcluster.utils.time import utcnow


@pytest.fixture
def conn(tmp_path):
	c = connect(tmp_path / "shared.db")
	init_schema(c)
	try:
		yield c
	finally:
		c.close()


def _seed_lock(conn, node: str, pid: int, age: timedelta = timedelta(0)) -> None:
	acquired_at = utcnow() - age
	with transaction(conn):
		conn.execute(
			"INSERT OR REPLACE INTO worker_lock (node, pid, acquired_at) VALUES (?, ?, ?)",
			(node, pid, acquired_at),
		)


def _owner(conn, node: str):
	row = conn.execute("SELECT pid FROM worker_lock WHERE node = ?", (node,)).fetchone()
	return None if row is None else row["pid"]


def test_each_node_gets_its_own_designated_worker(conn):
	# Another node's worker: a live PID that is not ours
	_seed_lock(conn, "node-b", os.getppid())

	assert try_acquire_worker_lock(conn, "node-a") is True
	assert _owner(conn, "node-a") == os.getpid()
	assert _owner(conn, "node-b") == os.getppid()


def test_live_sibling_worker_keeps_the_node_lock(conn):
	_seed_lock(conn, "node-a", os.getppid())

	assert try_acquire_worker_lock(conn, "node-a") is False
	assert _owner(conn, "node-a") == os.getppid()


def test_stale_lock_is_taken_over(conn):
	_seed_lock(conn, "node-a", os.getppid(), age=STALE_AFTER * 2)

	assert try_acquire_worker_lock(conn, "node-a") is True
	assert _owner(conn, "node-a") == os.getpid()


def test_reacquire_is_idempotent(conn):
	assert try_acquire_worker_lock(conn, "node-a") is True
	assert try_acquire_worker_lock(conn, "node-a") is True


def test_refresh_reports_a_lost_lock(conn):
	assert try_acquire_worker_lock(conn, "node-a") is True
	assert refresh_worker_lock(conn, "node-a") is True

	_seed_lock(conn, "node-a", os.getppid())
	assert refresh_worker_lock(conn, "node-a") is False


def test_release_only_drops_own_row(conn):
	_seed_lock(conn, "node-b", os.getppid())
	assert try_acquire_worker_lock(conn, "node-a") is True

	assert release_worker_lock(conn, "node-a") is True
	assert release_worker_lock(conn, "node-b") is True

	assert _owner(conn, "node-a") is None
	assert _owner(conn, "node-b") == os.getppid()


def test_single_row_lock_table_is_rebuilt(tmp_path):
	c = connect(tmp_path / "legacy.db")
	try:
		with transaction(c):
			c.execute(
				"CREATE TABLE worker_lock (id INTEGER PRIMARY KEY CHECK (id = 1), pid INTEGER NOT NULL, acquired_at timestamp NOT NULL)"
			)
			c.execute("INSERT INTO worker_lock (id, pid, acquired_at) VALUES (1, ?, ?)", (os.getppid(), utcnow()))
		init_schema(c)

		columns = {row[1] for row in c.execute("PRAGMA table_info(worker_lock)")}
		assert columns == {"node", "pid", "acquired_at"}
		assert try_acquire_worker_lock(c, "node-a") is True
	finally:
		c.close()
