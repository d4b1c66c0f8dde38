#!/usr/bin/env python3
#
# certcluster/issuer.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Drive one HTTP-01 issuance (or renewal) for a domain end to end."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncContextManager, Callable

from .acme.client import ACMEClient, ChallengeUnavailableError
from .acme.jws import create_csr
from .db.records import SqliteRecordStore
from .installer import CertificateInstallRequest, FileCertificateInstaller
from .utils.time import utcnow

_log = logging.getLogger(__name__)

__all__ = ["CertificateIssuer", "IssuedCertificate", "RENEWAL_LEAD"]

# Certificates are valid for 90 days; renew 30 days before expiry
RENEWAL_LEAD = timedelta(days=60)
SETTLE_DELAY = 60.0
FINALIZE_PAUSE = 1.0

ClientFactory = Callable[[], AsyncContextManager[ACMEClient]]


@dataclass(frozen=True)
class IssuedCertificate:
	domain: str
	certificate_pem: str
	private_key_pem: str
	issue_date: datetime
	renewal_date: datetime


class CertificateIssuer:
	"""Runs the validation protocol for a single domain.

	Any failure propagates unchanged and leaves the record's ``in_progress``
	flag as it was; the caller decides whether to retry.
	"""

	def __init__(
		self,
		store: SqliteRecordStore,
		client_factory: ClientFactory,
		installer: FileCertificateInstaller,
		*,
		email: str = "",
		settle_delay: float = SETTLE_DELAY,
		finalize_pause: float = FINALIZE_PAUSE,
		renewal_lead: timedelta = RENEWAL_LEAD,
		clock: Callable[[], datetime] = utcnow,
	):
		self.store = store
		self.client_factory = client_factory
		self.installer = installer
		self.email = email
		self.settle_delay = settle_delay
		self.finalize_pause = finalize_pause
		self.renewal_lead = renewal_lead
		self.clock = clock

	async def issue(self, domain: str, renewal: bool = False) -> IssuedCertificate:
		try:
			return await self._issue(domain, renewal)
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			_log.error("ISSUE failed domain=%s renewal=%s: %s", domain, renewal, exc)
			raise

	async def _issue(self, domain: str, renewal: bool) -> IssuedCertificate:
		_log.info("ISSUE start domain=%s renewal=%s", domain, renewal)
		async with self.client_factory() as client:
			await client.ensure_account(self.email)

			key_pem, csr_der = await asyncio.to_thread(create_csr, domain)

			order = await client.create_order(domain)
			authorizations = await client.get_authorizations(order)

			for authz in authorizations:
				challenge = client.find_http01_challenge(authz)
				if challenge is None:
					raise ChallengeUnavailableError(domain)

				await self.store.patch(
					domain,
					challenge_token=challenge["token"],
					challenge_content=client.key_authorization(challenge),
				)
				_log.info("ISSUE challenge published domain=%s token=%s", domain, challenge["token"])

				# Give every node that may serve the challenge time to see it
				await asyncio.sleep(self.settle_delay)

				await client.complete_challenge(challenge)
				await client.wait_for_valid_status(challenge)

			order = await client.finalize_order(order, csr_der)

			if renewal:
				await client.wait_for_valid_status(order)
				await asyncio.sleep(self.finalize_pause)
				order = await client.get_order(order)
			certificate_pem = await client.get_certificate(order)

		now = self.clock()
		renewal_date = now + self.renewal_lead
		await self.store.patch(
			domain,
			challenge_token=None,
			challenge_content=None,
			in_progress=False,
			issue_date=now,
			renewal_date=renewal_date,
		)
		_log.info("ISSUE complete domain=%s renewal_date=%s", domain, renewal_date.isoformat())

		request = CertificateInstallRequest(
			name=domain,
			certificate=certificate_pem,
			private_key=key_pem.decode("ascii"),
			is_authority=False,
			replicated=True,
		)
		_log.debug("ISSUE installing %s", self.installer.describe(request))
		await self.installer.install(request)

		return IssuedCertificate(
			domain=domain,
			certificate_pem=certificate_pem,
			private_key_pem=request.private_key,
			issue_date=now,
			renewal_date=renewal_date,
		)
