#!/usr/bin/env python3
#
# certcluster/api/cluster.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Cluster membership and coordinator status routes."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path

from ..cluster.leader import LeaderElector
from ..db.records import SqliteRecordStore
from ..models.domains import ClusterNodeCreate, ClusterNodePublic
from ..orchestrator import LifecycleOrchestrator
from ..utils.config import Config
from ..utils.deps import get_config, get_orchestrator, get_store
from .auth import require_api_token
from .response import ok_response

_log = logging.getLogger(__name__)

router = APIRouter(prefix="/cluster", tags=["cluster"], dependencies=[Depends(require_api_token)])


@router.get("/nodes")
async def list_nodes(store: SqliteRecordStore = Depends(get_store)):
	"""Cluster members in election order; the first one is the challenge leader."""
	nodes = await store.list_cluster_nodes()
	return ok_response(data=[ClusterNodePublic.from_node(n) for n in nodes])


@router.post("/nodes", status_code=201)
async def add_node(payload: ClusterNodeCreate, store: SqliteRecordStore = Depends(get_store)):
	if not await store.add_cluster_node(payload.name):
		raise HTTPException(status_code=409, detail="Node already registered")
	return ok_response(message="Node added", data={"name": payload.name})


@router.delete("/nodes/{name}")
async def remove_node(
	name: str = Path(..., min_length=1, max_length=253),
	store: SqliteRecordStore = Depends(get_store),
):
	"""Remove a member; removing a dead first node hands leadership to the next."""
	if not await store.remove_cluster_node(name):
		raise HTTPException(status_code=404, detail="Node not found")
	return ok_response(message="Node removed")


@router.get("/status")
async def cluster_status(
	cfg: Config = Depends(get_config),
	store: SqliteRecordStore = Depends(get_store),
	orchestrator: Optional[LifecycleOrchestrator] = Depends(get_orchestrator),
):
	election = await LeaderElector(store, cfg.hostname).elect()
	return ok_response(data={
		"hostname": cfg.hostname,
		"is_leader": election.is_leader,
		"leader": election.leader_name,
		"total_nodes": election.total_nodes,
		"designated_worker": orchestrator is not None,
		"jobs": orchestrator.scheduler.get_status() if orchestrator else [],
		"in_flight": orchestrator.in_flight if orchestrator else [],
		"feed_seq": orchestrator.last_seq if orchestrator else None,
		"acme_staging": cfg.is_staging,
	})
