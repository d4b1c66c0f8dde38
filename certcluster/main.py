#!/usr/bin/env python3
#
# certcluster/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import sys
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from .acme.client import ACMEClient
from .api import cluster as cluster_api
from .api import domains as domains_api
from .cluster.leader import LeaderElector
from .db.records import SqliteRecordStore
from .db.sqlite_leader import (
	HEARTBEAT_INTERVAL_SECONDS,
	refresh_worker_lock,
	release_worker_lock,
	try_acquire_worker_lock,
)
from .db.sqlite_runtime import connect
from .db.sqlite_schema import init_schema
from .installer import FileCertificateInstaller
from .issuer import CertificateIssuer
from .middleware.challenge import ChallengeResponderMiddleware
from .orchestrator import LifecycleOrchestrator
from .utils.config import Config, load_config
from .utils.scheduler import Scheduler

_log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVEL_COLORS = {
	logging.DEBUG: 36,
	logging.INFO: 32,
	logging.WARNING: 33,
	logging.ERROR: 31,
	logging.CRITICAL: 35,
}


class _LevelFormatter(logging.Formatter):
	"""Pads the level name to a fixed width and, on a terminal, colours it."""

	def __init__(self, *, color: bool):
		super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
		self.color = color

	def format(self, record: logging.LogRecord) -> str:
		original = record.levelname
		label = f"{original:<8}"
		code = _LEVEL_COLORS.get(record.levelno)
		if self.color and code is not None:
			label = f"\033[{code}m{label}\033[0m"
		record.levelname = label
		try:
			return super().format(record)
		finally:
			record.levelname = original


def _setup_logging(log_level: str) -> None:
	"""Send every logger, uvicorn's included, through one stdout handler."""
	level = logging.getLevelName(log_level)
	if not isinstance(level, int):
		level = logging.INFO

	handler = logging.StreamHandler(sys.stdout)
	handler.setFormatter(_LevelFormatter(color=sys.stdout.isatty()))
	logging.basicConfig(level=level, handlers=[handler], force=True)

	# uvicorn installs its own handlers before the factory runs
	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		server_log = logging.getLogger(name)
		server_log.handlers.clear()
		server_log.propagate = True
		server_log.setLevel(level)

	for noisy in ("aiosqlite", "httpcore", "httpx"):
		logging.getLogger(noisy).setLevel(logging.WARNING)


def _acquire_worker_lock(cfg: Config) -> bool:
	conn = connect(cfg.db_path)
	try:
		init_schema(conn)
		return try_acquire_worker_lock(conn, cfg.hostname)
	finally:
		conn.close()


def _with_lock_conn(cfg: Config, func: Callable[[sqlite3.Connection, str], bool]) -> bool:
	conn = connect(cfg.db_path)
	try:
		return func(conn, cfg.hostname)
	finally:
		conn.close()


def build_orchestrator(
	cfg: Config,
	store: SqliteRecordStore,
	installer: FileCertificateInstaller,
	*,
	on_lock_lost: Callable[[], None] | None = None,
) -> LifecycleOrchestrator:
	"""Wire issuer, elector and scheduler for the designated worker.

	``on_lock_lost`` runs when the heartbeat finds another worker of this node
	holding the lock.
	"""

	def client_factory() -> ACMEClient:
		return ACMEClient(cfg.acme_directory, cfg.acme_state_dir)

	issuer = CertificateIssuer(
		store,
		client_factory,
		installer,
		email=cfg.acme_email,
		settle_delay=cfg.settle_delay,
	)

	scheduler = Scheduler()

	async def heartbeat() -> None:
		if await asyncio.to_thread(_with_lock_conn, cfg, refresh_worker_lock):
			return
		_log.error("WORKER_LOCK heartbeat failed node=%s pid=%d", cfg.hostname, os.getpid())
		if on_lock_lost is not None:
			on_lock_lost()

	scheduler.add("worker-lock-heartbeat", HEARTBEAT_INTERVAL_SECONDS, heartbeat)

	return LifecycleOrchestrator(
		store,
		issuer,
		LeaderElector(store, cfg.hostname),
		scheduler=scheduler,
		renewal_interval=cfg.renewal_interval,
		stagger_step=cfg.stagger_step,
		retry_attempts=cfg.retry_attempts,
		retry_base_delay=cfg.retry_base_delay,
	)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Application lifespan manager."""
	cfg: Config = app.state.cfg
	cfg.data_dir.mkdir(parents=True, exist_ok=True)
	cfg.certs_dir.mkdir(parents=True, exist_ok=True)

	# ─── BOOTSTRAP ───────────────────────────────────────────
	is_designated = await asyncio.to_thread(_acquire_worker_lock, cfg)
	if is_designated:
		_log.info("This worker is the designated coordinator (pid=%d)", os.getpid())
	else:
		_log.info("Another worker coordinates certificates, serving only (pid=%d)", os.getpid())

	store = SqliteRecordStore(cfg.db_path, poll_interval=cfg.feed_poll_interval)
	await store.open()
	app.state.store = store
	app.state.installer = FileCertificateInstaller(cfg.certs_dir)
	app.state.orchestrator = None

	if cfg.register_node and await store.add_cluster_node(cfg.hostname):
		_log.info("Registered this node as cluster member %s", cfg.hostname)

	# ─── COORDINATOR ─────────────────────────────────────────
	orchestrator: LifecycleOrchestrator | None = None
	step_down: asyncio.Task | None = None

	def lock_lost() -> None:
		nonlocal step_down
		if orchestrator is None or step_down is not None:
			return
		_log.error("WORKER_LOCK taken over, stopping the coordinator on this worker (pid=%d)", os.getpid())
		app.state.orchestrator = None
		step_down = asyncio.create_task(orchestrator.stop(), name="coordinator-step-down")

	if is_designated:
		orchestrator = build_orchestrator(cfg, store, app.state.installer, on_lock_lost=lock_lost)
		await orchestrator.start()
		app.state.orchestrator = orchestrator

	_log.info(
		"CertCluster started (host=%s, designated=%s, staging=%s, pid=%d)",
		cfg.hostname, is_designated, cfg.is_staging, os.getpid(),
	)

	try:
		yield
	finally:
		# ─── SHUTDOWN ────────────────────────────────────────
		if step_down is not None:
			await step_down
		elif orchestrator is not None:
			await orchestrator.stop()
		if is_designated:
			await asyncio.to_thread(_with_lock_conn, cfg, release_worker_lock)
		await store.close()
		_log.info("CertCluster stopped (pid=%d)", os.getpid())


def create_app(cfg: Config | None = None) -> FastAPI:
	"""Application factory for CertCluster."""
	cfg = cfg or load_config()
	_setup_logging(cfg.log_level)

	app = FastAPI(
		title="CertCluster",
		description="Cluster-wide ACME HTTP-01 certificate lifecycle coordinator",
		version="0.1.0",
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)
	app.state.cfg = cfg

	# ─── MIDDLEWARE ──────────────────────────────────────────
	app.add_middleware(ChallengeResponderMiddleware)

	# ─── API ROUTES ──────────────────────────────────────────
	app.include_router(domains_api.router, prefix="/api")
	app.include_router(cluster_api.router, prefix="/api")

	return app
