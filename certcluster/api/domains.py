#!/usr/bin/env python3
#
# certcluster/api/domains.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Domain registration and certificate inventory routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Path

from ..db.records import RecordExistsError, SqliteRecordStore
from ..installer import FileCertificateInstaller
from ..models.domains import DOMAIN_PATTERN, DomainCreate, DomainPublic
from ..utils.deps import get_installer, get_store
from .auth import require_api_token
from .response import ok_response

_log = logging.getLogger(__name__)

router = APIRouter(tags=["domains"], dependencies=[Depends(require_api_token)])


async def _get_or_404(store: SqliteRecordStore, domain: str):
	record = await store.get(domain.lower())
	if record is None:
		raise HTTPException(status_code=404, detail="Domain not found")
	return record


@router.post("/domains", status_code=201)
async def create_domain(payload: DomainCreate, store: SqliteRecordStore = Depends(get_store)):
	"""Register a domain; the designated worker picks it up from the change feed."""
	try:
		record = await store.create(payload.domain)
	except RecordExistsError:
		raise HTTPException(status_code=409, detail="Domain already registered")
	return ok_response(message="Domain registered", data=DomainPublic.from_record(record))


@router.get("/domains")
async def list_domains(store: SqliteRecordStore = Depends(get_store)):
	records = [DomainPublic.from_record(r) async for r in store.search()]
	return ok_response(data=records)


@router.get("/domains/{domain}")
async def get_domain(
	domain: str = Path(..., max_length=253, pattern=DOMAIN_PATTERN),
	store: SqliteRecordStore = Depends(get_store),
):
	record = await _get_or_404(store, domain)
	return ok_response(data=DomainPublic.from_record(record))


@router.post("/domains/{domain}/reset")
async def reset_domain(
	domain: str = Path(..., max_length=253, pattern=DOMAIN_PATTERN),
	store: SqliteRecordStore = Depends(get_store),
):
	"""Clear a stuck ``in_progress`` flag and any stale challenge.

	A never-issued domain becomes fresh again and is re-claimed from the
	change feed; an issued one waits for its next renewal scan.
	"""
	record = await _get_or_404(store, domain)
	record = await store.patch(
		record.domain,
		in_progress=False,
		challenge_token=None,
		challenge_content=None,
	)
	_log.info("RECORD reset domain=%s", record.domain)
	return ok_response(message="Domain reset", data=DomainPublic.from_record(record))


@router.get("/certificates")
async def list_certificates(installer: FileCertificateInstaller = Depends(get_installer)):
	"""Certificates installed on this node."""
	return ok_response(data=installer.list_installed())
