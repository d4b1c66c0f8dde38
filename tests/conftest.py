#!/usr/bin/env python3
#
# tests/conftest.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Shared fixtures: a temporary record store, config and a scripted ACME client."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import pytest
import pytest_asyncio

from certcluster.db.records import SqliteRecordStore
from certcluster.utils.config import load_config, reset_config

API_TOKEN = "unit-test-token"

FAKE_PEM = (
	"-----BEGIN CERTIFICATE-----\nMIIBleaf\n-----END CERTIFICATE-----\n"
	"-----BEGIN CERTIFICATE-----\nMIIBintermediate\n-----END CERTIFICATE-----\n"
)


@pytest.fixture
def cfg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
	monkeypatch.setenv("CERTCLUSTER_DATA_DIR", str(tmp_path / "data"))
	monkeypatch.setenv("CERTCLUSTER_API_TOKEN", API_TOKEN)
	monkeypatch.setenv("CERTCLUSTER_HOSTNAME", "node-a")
	monkeypatch.setenv("CERTCLUSTER_ACME_DIRECTORY", "https://acme.test/directory")
	monkeypatch.setenv("CERTCLUSTER_FEED_POLL_INTERVAL", "0.05")
	reset_config()
	yield load_config()
	reset_config()


@pytest_asyncio.fixture
async def store(tmp_path: Path):
	s = SqliteRecordStore(tmp_path / "records.db", poll_interval=0.01)
	await s.open()
	try:
		yield s
	finally:
		await s.close()


class FakeACMEClient:
	"""Scripted stand-in for ACMEClient; records every call in order."""

	def __init__(self, *, offer_http01: bool = True, fail_on: str | None = None):
		self.offer_http01 = offer_http01
		self.fail_on = fail_on
		self.calls: list[str] = []
		self.order_body = {"status": "pending", "authorizations": ["https://acme.test/authz/1"]}

	def _record(self, name: str) -> None:
		self.calls.append(name)
		if self.fail_on == name:
			raise RuntimeError(f"{name} failed")

	async def ensure_account(self, email: str = "") -> str:
		self._record("ensure_account")
		return "https://acme.test/acct/1"

	async def create_order(self, domain: str):
		self._record("create_order")
		return {"url": "https://acme.test/order/1", "domain": domain}

	async def get_authorizations(self, order) -> list[dict]:
		self._record("get_authorizations")
		challenges = [{"type": "dns-01", "token": "dns-token", "url": "https://acme.test/chall/dns"}]
		if self.offer_http01:
			challenges.append({"type": "http-01", "token": "tok-123", "url": "https://acme.test/chall/http"})
		return [{"url": "https://acme.test/authz/1", "challenges": challenges}]

	@staticmethod
	def find_http01_challenge(authz: dict) -> dict | None:
		return next((c for c in authz.get("challenges", []) if c.get("type") == "http-01"), None)

	def key_authorization(self, challenge: dict) -> str:
		return f"{challenge['token']}.thumb"

	async def complete_challenge(self, challenge: dict) -> dict:
		self._record("complete_challenge")
		return challenge

	async def wait_for_valid_status(self, resource) -> dict:
		self._record("wait_for_valid_status")
		return {"status": "valid"}

	async def finalize_order(self, order, csr_der: bytes):
		self._record("finalize_order")
		return order

	async def get_order(self, order):
		self._record("get_order")
		return {**order, "refreshed": True}

	async def get_certificate(self, order) -> str:
		self._record("get_certificate")
		return FAKE_PEM


@pytest.fixture
def fake_acme() -> FakeACMEClient:
	return FakeACMEClient()


@pytest.fixture
def client_factory(fake_acme: FakeACMEClient):
	@asynccontextmanager
	async def factory():
		yield fake_acme
	return factory


class RecordingInstaller:
	"""Installer double that keeps install requests in memory."""

	def __init__(self):
		self.requests = []

	async def install(self, request):
		self.requests.append(request)

	def describe(self, request) -> dict:
		return {"name": request.name}


@pytest.fixture
def installer() -> RecordingInstaller:
	return RecordingInstaller()
