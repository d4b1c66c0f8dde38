#!/usr/bin/env python3
#
# tests/unit/test_issuer.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from certcluster.acme.client import ChallengeUnavailableError
from certcluster.issuer import RENEWAL_LEAD, CertificateIssuer

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _issuer(store, client_factory, installer) -> CertificateIssuer:
	return CertificateIssuer(
		store,
		client_factory,
		installer,
		settle_delay=0,
		finalize_pause=0,
		clock=lambda: NOW,
	)


@pytest.mark.asyncio
async def test_issue_publishes_challenge_then_records_dates(store, client_factory, fake_acme, installer):
	await store.create("example.com")
	await store.claim("example.com")
	seen_during_validation = []

	original = fake_acme.complete_challenge

	async def complete_challenge(challenge):
		seen_during_validation.append(await store.get("example.com"))
		return await original(challenge)

	fake_acme.complete_challenge = complete_challenge

	issued = await _issuer(store, client_factory, installer).issue("example.com")

	published = seen_during_validation[0]
	assert published.challenge_token == "tok-123"
	assert published.challenge_content == "tok-123.thumb"
	assert published.in_progress is True

	record = await store.get("example.com")
	assert record.challenge_token is None
	assert record.challenge_content is None
	assert record.in_progress is False
	assert record.issue_date == NOW
	assert record.renewal_date == NOW + timedelta(days=60)
	assert issued.renewal_date - issued.issue_date == RENEWAL_LEAD

	assert fake_acme.calls == [
		"ensure_account",
		"create_order",
		"get_authorizations",
		"complete_challenge",
		"wait_for_valid_status",
		"finalize_order",
		"get_certificate",
	]

	request = installer.requests[0]
	assert request.name == "example.com"
	assert request.certificate == issued.certificate_pem
	assert "PRIVATE KEY" in request.private_key
	assert request.is_authority is False
	assert request.replicated is True


@pytest.mark.asyncio
async def test_renewal_refetches_order_before_download(store, client_factory, fake_acme, installer):
	await store.create("example.com")
	await store.patch("example.com", in_progress=True, issue_date=NOW - timedelta(days=61))

	await _issuer(store, client_factory, installer).issue("example.com", renewal=True)

	assert fake_acme.calls[-4:] == [
		"finalize_order",
		"wait_for_valid_status",
		"get_order",
		"get_certificate",
	]
	record = await store.get("example.com")
	assert record.issue_date == NOW
	assert record.in_progress is False


@pytest.mark.asyncio
async def test_missing_http01_challenge_leaves_flag_set(store, client_factory, fake_acme, installer):
	fake_acme.offer_http01 = False
	await store.create("example.com")
	await store.claim("example.com")

	with pytest.raises(ChallengeUnavailableError):
		await _issuer(store, client_factory, installer).issue("example.com")

	record = await store.get("example.com")
	assert record.in_progress is True
	assert record.challenge_token is None
	assert record.issue_date is None
	assert "complete_challenge" not in fake_acme.calls
	assert installer.requests == []


@pytest.mark.asyncio
async def test_ca_failure_propagates_unchanged(store, client_factory, fake_acme, installer):
	fake_acme.fail_on = "finalize_order"
	await store.create("example.com")
	await store.claim("example.com")

	with pytest.raises(RuntimeError, match="finalize_order failed"):
		await _issuer(store, client_factory, installer).issue("example.com")

	record = await store.get("example.com")
	assert record.in_progress is True
	# The published challenge stays until the next attempt overwrites it
	assert record.challenge_token == "tok-123"
	assert installer.requests == []
