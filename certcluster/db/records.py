#!/usr/bin/env python3
#
# certcluster/db/records.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Async SQLite record store for domain certificate records.

Every write appends the record's post-write snapshot to the ``record_changes``
journal inside the same transaction. :meth:`SqliteRecordStore.subscribe`
tails that journal by sequence number, so every worker and every node sharing
the database file sees writes in the order they were applied.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite

from ..models.records import (
	MUTABLE_FIELDS,
	ChangeEvent,
	ClusterNode,
	Condition,
	DomainCertificateRecord,
)
from ..utils.time import utcnow
from .sqlite_runtime import BUSY_TIMEOUT_SECONDS, connect
from .sqlite_schema import init_schema

_log = logging.getLogger(__name__)

__all__ = ["RecordExistsError", "SqliteRecordStore"]

FEED_BATCH_SIZE = 500

_RECORD_COLUMNS = (
	"domain",
	"challenge_token",
	"challenge_content",
	"issue_date",
	"renewal_date",
	"in_progress",
)
_SELECT_RECORD = f"SELECT {', '.join(_RECORD_COLUMNS)} FROM domain_certificates"

_COMPARATORS = {
	"equal": "=",
	"not_equal": "!=",
	"less_than": "<",
	"less_than_equal": "<=",
	"greater_than": ">",
	"greater_than_equal": ">=",
}


class RecordExistsError(Exception):
	"""Raised when registering a domain that already has a record."""


def _row_to_record(row: sqlite3.Row) -> DomainCertificateRecord:
	return DomainCertificateRecord(
		domain=row["domain"],
		challenge_token=row["challenge_token"],
		challenge_content=row["challenge_content"],
		issue_date=row["issue_date"],
		renewal_date=row["renewal_date"],
		in_progress=bool(row["in_progress"]),
	)


def _build_where(conditions: Iterable[Condition]) -> tuple[str, list[Any]]:
	clauses: list[str] = []
	params: list[Any] = []
	for cond in conditions:
		if cond.attribute not in _RECORD_COLUMNS:
			raise ValueError(f"Unsupported search attribute: {cond.attribute!r}")
		op = _COMPARATORS.get(cond.comparator)
		if op is None:
			raise ValueError(f"Unsupported comparator: {cond.comparator!r}")
		if cond.value is None:
			if cond.comparator == "equal":
				clauses.append(f"{cond.attribute} IS NULL")
			elif cond.comparator == "not_equal":
				clauses.append(f"{cond.attribute} IS NOT NULL")
			else:
				raise ValueError(f"Comparator {cond.comparator!r} needs a value")
			continue
		clauses.append(f"{cond.attribute} {op} ?")
		params.append(cond.value)
	where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
	return where, params


class SqliteRecordStore:
	"""Domain records, cluster membership and change feed on one SQLite file."""

	def __init__(self, db_path: Path, *, poll_interval: float = 1.0):
		self.db_path = db_path
		self.poll_interval = poll_interval
		self._conn: aiosqlite.Connection | None = None
		# One connection per store; serialize access so a transaction is never interleaved
		self._lock = asyncio.Lock()

	async def __aenter__(self) -> SqliteRecordStore:
		await self.open()
		return self

	async def __aexit__(self, *args) -> None:
		await self.close()

	def _bootstrap(self) -> None:
		conn = connect(self.db_path)
		try:
			init_schema(conn)
		finally:
			conn.close()

	async def open(self) -> None:
		if self._conn is not None:
			return
		await asyncio.to_thread(self._bootstrap)
		conn = await aiosqlite.connect(
			str(self.db_path),
			detect_types=sqlite3.PARSE_DECLTYPES,
			isolation_level=None,
			timeout=BUSY_TIMEOUT_SECONDS,
		)
		conn.row_factory = sqlite3.Row
		self._conn = conn
		_log.debug("RECORD_STORE opened %s", self.db_path)

	async def close(self) -> None:
		conn, self._conn = self._conn, None
		if conn is not None:
			await conn.close()

	def _require_conn(self) -> aiosqlite.Connection:
		if self._conn is None:
			raise RuntimeError("Record store is not open")
		return self._conn

	@asynccontextmanager
	async def _write(self):
		async with self._lock:
			conn = self._require_conn()
			await conn.execute("BEGIN IMMEDIATE")
			try:
				yield conn
			except BaseException:
				await conn.execute("ROLLBACK")
				raise
			await conn.execute("COMMIT")

	async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
		async with self._lock:
			conn = self._require_conn()
			async with conn.execute(sql, tuple(params)) as cursor:
				return list(await cursor.fetchall())

	async def _journal(self, conn: aiosqlite.Connection, domain: str) -> DomainCertificateRecord:
		"""Append the current state of ``domain`` to the change feed (inside a write)."""
		async with conn.execute(f"{_SELECT_RECORD} WHERE domain = ?", (domain,)) as cursor:
			row = await cursor.fetchone()
		record = _row_to_record(row)
		await conn.execute(
			"INSERT INTO record_changes (domain, snapshot, changed_at) VALUES (?, ?, ?)",
			(domain, json.dumps(record.to_snapshot()), utcnow()),
		)
		return record

	# ─────────────────────────────────────────────────────────────────────
	# Domain records
	# ─────────────────────────────────────────────────────────────────────

	async def get(self, domain: str) -> DomainCertificateRecord | None:
		rows = await self._fetchall(f"{_SELECT_RECORD} WHERE domain = ?", (domain,))
		return _row_to_record(rows[0]) if rows else None

	async def create(self, domain: str) -> DomainCertificateRecord:
		"""Register a domain with every lifecycle field empty."""
		now = utcnow()
		try:
			async with self._write() as conn:
				await conn.execute(
					"INSERT INTO domain_certificates (domain, created_at, updated_at) VALUES (?, ?, ?)",
					(domain, now, now),
				)
				record = await self._journal(conn, domain)
		except sqlite3.IntegrityError as exc:
			raise RecordExistsError(f"Domain {domain!r} is already registered") from exc
		_log.info("RECORD created domain=%s", domain)
		return record

	async def patch(self, domain: str, /, **fields: Any) -> DomainCertificateRecord:
		"""Upsert only the given fields of ``domain``, leaving the others untouched."""
		if not fields:
			raise ValueError("patch() needs at least one field")
		unknown = set(fields) - MUTABLE_FIELDS
		if unknown:
			raise ValueError(f"Unknown record fields: {sorted(unknown)}")

		columns = list(fields)
		now = utcnow()
		placeholders = ", ".join("?" for _ in columns)
		updates = ", ".join(f"{col} = excluded.{col}" for col in columns)
		sql = (
			f"INSERT INTO domain_certificates (domain, {', '.join(columns)}, created_at, updated_at) "
			f"VALUES (?, {placeholders}, ?, ?) "
			f"ON CONFLICT(domain) DO UPDATE SET {updates}, updated_at = excluded.updated_at"
		)
		params = [domain, *(fields[c] for c in columns), now, now]
		async with self._write() as conn:
			await conn.execute(sql, params)
			return await self._journal(conn, domain)

	async def claim(self, domain: str) -> bool:
		"""Compare-and-swap ``in_progress`` from false to true.

		Returns True only for the caller that performed the flip.
		"""
		async with self._write() as conn:
			cursor = await conn.execute(
				"UPDATE domain_certificates SET in_progress = 1, updated_at = ? WHERE domain = ? AND in_progress = 0",
				(utcnow(), domain),
			)
			claimed = cursor.rowcount == 1
			await cursor.close()
			if claimed:
				await self._journal(conn, domain)
		return claimed

	async def search(self, *conditions: Condition) -> AsyncIterator[DomainCertificateRecord]:
		"""Yield records matching every condition, in domain order.

		Rows are fetched before the first yield, so callers may write to the
		store while iterating.
		"""
		where, params = _build_where(conditions)
		rows = await self._fetchall(f"{_SELECT_RECORD}{where} ORDER BY domain", params)
		for row in rows:
			yield _row_to_record(row)

	# ─────────────────────────────────────────────────────────────────────
	# Change feed
	# ─────────────────────────────────────────────────────────────────────

	async def feed_head(self) -> int:
		rows = await self._fetchall("SELECT COALESCE(MAX(seq), 0) AS head FROM record_changes")
		return int(rows[0]["head"])

	async def subscribe(self, since: int | None = None) -> AsyncIterator[ChangeEvent]:
		"""Yield change events with ``seq > since`` forever.

		Args:
			since: Last sequence already seen; None starts at the current head
				(live events only)
		"""
		if since is None:
			since = await self.feed_head()
		while True:
			rows = await self._fetchall(
				"SELECT seq, snapshot, changed_at FROM record_changes WHERE seq > ? ORDER BY seq LIMIT ?",
				(since, FEED_BATCH_SIZE),
			)
			for row in rows:
				since = int(row["seq"])
				yield ChangeEvent(
					seq=since,
					value=DomainCertificateRecord.from_snapshot(json.loads(row["snapshot"])),
					changed_at=row["changed_at"],
				)
			if len(rows) < FEED_BATCH_SIZE:
				await asyncio.sleep(self.poll_interval)

	async def prune_changes(self, older_than: timedelta) -> int:
		"""Delete journal entries older than ``older_than``; returns rows removed."""
		cutoff = utcnow() - older_than
		async with self._write() as conn:
			cursor = await conn.execute("DELETE FROM record_changes WHERE changed_at < ?", (cutoff,))
			deleted = cursor.rowcount
			await cursor.close()
		if deleted:
			_log.info("FEED pruned %d change entries older than %s", deleted, cutoff.isoformat())
		return deleted

	# ─────────────────────────────────────────────────────────────────────
	# Cluster membership
	# ─────────────────────────────────────────────────────────────────────

	async def list_cluster_nodes(self) -> list[ClusterNode]:
		"""All known cluster members in store order (rowid)."""
		rows = await self._fetchall("SELECT name, added_at FROM cluster_nodes ORDER BY rowid")
		return [ClusterNode(name=row["name"], added_at=row["added_at"]) for row in rows]

	async def add_cluster_node(self, name: str) -> bool:
		"""Add a member; returns False when it was already listed."""
		async with self._write() as conn:
			cursor = await conn.execute(
				"INSERT OR IGNORE INTO cluster_nodes (name, added_at) VALUES (?, ?)",
				(name, utcnow()),
			)
			added = cursor.rowcount == 1
			await cursor.close()
		if added:
			_log.info("CLUSTER node added name=%s", name)
		return added

	async def remove_cluster_node(self, name: str) -> bool:
		async with self._write() as conn:
			cursor = await conn.execute("DELETE FROM cluster_nodes WHERE name = ?", (name,))
			removed = cursor.rowcount == 1
			await cursor.close()
		if removed:
			_log.info("CLUSTER node removed name=%s", name)
		return removed

