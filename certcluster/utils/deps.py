#!/usr/bin/env python3
#
# certcluster/utils/deps.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI dependency helpers."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from ..db.records import SqliteRecordStore
from ..installer import FileCertificateInstaller
from ..orchestrator import LifecycleOrchestrator
from .config import Config


def get_store(request: Request) -> SqliteRecordStore:
	"""The record store opened by the lifespan (one per worker)."""
	return request.app.state.store


def get_config(request: Request) -> Config:
	"""Get the application configuration from app state."""
	return request.app.state.cfg


def get_installer(request: Request) -> FileCertificateInstaller:
	return request.app.state.installer


def get_orchestrator(request: Request) -> Optional[LifecycleOrchestrator]:
	"""The orchestrator, or None when this worker is not the designated one."""
	return getattr(request.app.state, "orchestrator", None)
