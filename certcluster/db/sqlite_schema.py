#!/usr/bin/env python3
#
# certcluster/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite schema initialization."""

from __future__ import annotations

import logging
import sqlite3

from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
	"""Column names of ``table``; empty when it does not exist yet."""
	return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


# ─────────────────────────────────────────────────────────────────────────────
# Schema Initialization
# ─────────────────────────────────────────────────────────────────────────────


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create the required database schema. Idempotent and safe for every worker."""
	with transaction(conn, immediate=True):
		# One record per domain
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS domain_certificates (
				domain TEXT PRIMARY KEY,
				challenge_token TEXT,
				challenge_content TEXT,
				issue_date timestamp,
				renewal_date timestamp,
				in_progress INTEGER NOT NULL DEFAULT 0,
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL
			)
			"""
		)
		conn.execute(
			"CREATE INDEX IF NOT EXISTS idx_domain_certificates_token ON domain_certificates(challenge_token)"
		)
		conn.execute(
			"CREATE INDEX IF NOT EXISTS idx_domain_certificates_renewal ON domain_certificates(renewal_date)"
		)

		# Change feed journal: one row per applied write, carrying the post-write snapshot
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS record_changes (
				seq INTEGER PRIMARY KEY AUTOINCREMENT,
				domain TEXT NOT NULL,
				snapshot TEXT NOT NULL,
				changed_at timestamp NOT NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_record_changes_changed_at ON record_changes(changed_at)")

		# Cluster membership (system namespace); rowid order is the election order
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS cluster_nodes (
				name TEXT NOT NULL UNIQUE,
				added_at timestamp NOT NULL
			)
			"""
		)

		# Designated-worker lock, one row per node (rows are transient heartbeats)
		if _columns(conn, "worker_lock") - {"node", "pid", "acquired_at"}:
			conn.execute("DROP TABLE worker_lock")
			_log.info("Migration: worker_lock rebuilt with per-node rows")
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS worker_lock (
				node TEXT PRIMARY KEY,
				pid INTEGER NOT NULL,
				acquired_at timestamp NOT NULL
			)
			"""
		)
	_log.debug("Schema initialized")
