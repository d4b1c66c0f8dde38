#!/usr/bin/env python3
#
# certcluster/cluster/leader.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Challenge-leader election across cluster nodes.

The leader is whichever node the store lists first. The rule is static and
deterministic: it does not rotate and it is not failure-aware, so while the
first-listed node is down no other node issues certificates. Removing the
dead node from ``cluster_nodes`` hands leadership to the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..db.records import SqliteRecordStore

_log = logging.getLogger(__name__)

__all__ = ["Election", "LeaderElector", "elect_leader"]


@dataclass(frozen=True)
class Election:
	is_leader: bool
	total_nodes: int
	leader_name: str | None = None


async def elect_leader(store: SqliteRecordStore, hostname: str) -> Election:
	"""Decide whether ``hostname`` is the challenge leader.

	With no visible cluster members the caller is leader by default
	(bootstrap case). Store errors propagate; no leadership is claimed.
	"""
	nodes = await store.list_cluster_nodes()
	if not nodes:
		return Election(is_leader=True, total_nodes=0, leader_name=hostname)
	first = nodes[0].name
	return Election(is_leader=first == hostname, total_nodes=len(nodes), leader_name=first)


class LeaderElector:
	"""Binds the election rule to this node's configured hostname."""

	def __init__(self, store: SqliteRecordStore, hostname: str):
		self.store = store
		self.hostname = hostname

	async def elect(self) -> Election:
		election = await elect_leader(self.store, self.hostname)
		_log.debug(
			"ELECTION host=%s leader=%s is_leader=%s nodes=%d",
			self.hostname, election.leader_name, election.is_leader, election.total_nodes,
		)
		return election
