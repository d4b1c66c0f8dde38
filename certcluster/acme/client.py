#!/usr/bin/env python3
#
# certcluster/acme/client.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Lightweight async ACME v2 client (HTTP-01 only)."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric import ec

from .jws import b64url, jwk_from_key, jwk_thumbprint, load_or_create_account_key, sign_es256

_log = logging.getLogger(__name__)

__all__ = ["AcmeError", "AcmeOrder", "ACMEClient", "ChallengeUnavailableError"]

_BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
_FAILED_STATUSES = {"invalid", "expired", "revoked", "deactivated"}


class AcmeError(Exception):
	"""A request to the certificate authority failed or returned a bad state."""

	def __init__(self, message: str, status_code: int | None = None):
		super().__init__(message)
		self.status_code = status_code


class ChallengeUnavailableError(AcmeError):
	"""The authority offered no HTTP-01 challenge for a domain."""

	def __init__(self, domain: str):
		super().__init__(f"No HTTP-01 challenge available for {domain}")
		self.domain = domain


@dataclass
class AcmeOrder:
	"""An order resource: its URL plus the latest body the server returned."""
	url: str
	body: dict = field(default_factory=dict)

	@property
	def status(self) -> str | None:
		return self.body.get("status")

	@property
	def authorizations(self) -> list[str]:
		return list(self.body.get("authorizations", []))

	@property
	def finalize_url(self) -> str | None:
		return self.body.get("finalize")

	@property
	def certificate_url(self) -> str | None:
		return self.body.get("certificate")


def _problem_detail(resp: httpx.Response) -> str:
	"""Summarise an RFC 7807 problem document, falling back to the raw body."""
	try:
		problem = resp.json()
	except ValueError:
		return resp.text
	if not isinstance(problem, dict) or not problem.get("detail"):
		return resp.text
	kind = problem.get("type")
	return f"{problem['detail']} ({kind})" if kind else problem["detail"]


class ACMEClient:
	"""One ACME session: account, orders, challenges, certificate download.

	Use as an async context manager; the HTTP client lives for the session.
	"""

	def __init__(
		self,
		directory_url: str,
		state_dir: Path,
		*,
		poll_attempts: int = 30,
		poll_delay: float = 2.0,
		transport: httpx.AsyncBaseTransport | None = None,
	):
		self.directory_url = directory_url
		self.state_dir = state_dir
		self.poll_attempts = poll_attempts
		self.poll_delay = poll_delay
		self.directory: dict = {}
		self.nonce: Optional[str] = None
		self.account_key: Optional[ec.EllipticCurvePrivateKey] = None
		self.account_url: Optional[str] = None
		self.http_client: Optional[httpx.AsyncClient] = None
		self._transport = transport

		self.account_key_path = state_dir / "account_key.pem"
		self.account_url_path = state_dir / "account_url.txt"
		self.account_thumbprint_path = state_dir / "account_thumbprint.txt"

	async def __aenter__(self) -> ACMEClient:
		self.http_client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
		return self

	async def __aexit__(self, *args) -> None:
		if self.http_client:
			await self.http_client.aclose()
			self.http_client = None

	def _http(self) -> httpx.AsyncClient:
		if not self.http_client:
			raise RuntimeError("HTTP client not initialized")
		return self.http_client

	async def _fetch_directory(self) -> None:
		resp = await self._http().get(self.directory_url)
		if resp.status_code != 200:
			raise AcmeError(f"Failed to fetch ACME directory: {resp.status_code}", resp.status_code)
		self.directory = resp.json()

	async def _get_nonce(self) -> str:
		if self.nonce:
			nonce, self.nonce = self.nonce, None
			return nonce

		resp = await self._http().head(self.directory["newNonce"])
		if "Replay-Nonce" not in resp.headers:
			# Fallback: GET request to newNonce
			resp = await self._http().get(self.directory["newNonce"])
		if "Replay-Nonce" not in resp.headers:
			raise AcmeError("Failed to obtain ACME nonce", resp.status_code)
		return resp.headers["Replay-Nonce"]

	def _thumbprint(self) -> str:
		if not self.account_key:
			raise RuntimeError("Account key not loaded")
		return jwk_thumbprint(jwk_from_key(self.account_key))

	async def _signed_request(self, url: str, payload: Optional[dict], *, retry_nonce: bool = True) -> httpx.Response:
		"""POST a JWS to ``url``; ``payload=None`` makes it a POST-as-GET."""
		if not self.account_key:
			raise RuntimeError("Account key not loaded")

		protected: dict[str, Any] = {"alg": "ES256", "nonce": await self._get_nonce(), "url": url}
		if self.account_url:
			protected["kid"] = self.account_url
		else:
			protected["jwk"] = jwk_from_key(self.account_key)

		protected_b64 = b64url(json.dumps(protected).encode("utf-8"))
		payload_b64 = "" if payload is None else b64url(json.dumps(payload).encode("utf-8"))
		signature = sign_es256(self.account_key, f"{protected_b64}.{payload_b64}".encode("ascii"))

		resp = await self._http().post(
			url,
			json={"protected": protected_b64, "payload": payload_b64, "signature": b64url(signature)},
			headers={"Content-Type": "application/jose+json"},
		)
		if "Replay-Nonce" in resp.headers:
			self.nonce = resp.headers["Replay-Nonce"]

		if resp.status_code == 400 and retry_nonce:
			try:
				problem_type = resp.json().get("type")
			except ValueError:
				problem_type = None
			if problem_type == _BAD_NONCE:
				_log.debug("ACME bad nonce for %s, retrying once", url)
				return await self._signed_request(url, payload, retry_nonce=False)
		return resp

	# ─────────────────────────────────────────────────────────────────────
	# Account
	# ─────────────────────────────────────────────────────────────────────

	async def ensure_account(self, email: str = "") -> str:
		"""Register a new account or re-use the one bound to the stored key."""
		await self._fetch_directory()
		self.account_key = await asyncio.to_thread(load_or_create_account_key, self.account_key_path)
		current_thumbprint = self._thumbprint()

		if self.account_url_path.exists():
			stored = (
				self.account_thumbprint_path.read_text().strip()
				if self.account_thumbprint_path.exists() else current_thumbprint
			)
			if stored == current_thumbprint:
				self.account_thumbprint_path.write_text(current_thumbprint)
				self.account_url = self.account_url_path.read_text().strip()
				_log.debug("Using existing ACME account: %s", self.account_url)
				return self.account_url
			_log.warning("Account key changed (thumbprint mismatch). Re-registering.")
			self.account_url_path.unlink()
			self.account_thumbprint_path.unlink(missing_ok=True)

		payload: dict[str, Any] = {"termsOfServiceAgreed": True}
		if email:
			payload["contact"] = [f"mailto:{email}"]
		resp = await self._signed_request(self.directory["newAccount"], payload)
		if resp.status_code not in (200, 201):
			raise AcmeError(f"Failed to register account: {_problem_detail(resp)}", resp.status_code)

		account_url = resp.headers.get("Location")
		if not account_url:
			raise AcmeError("No account URL in response")
		self.account_url = account_url
		self.account_url_path.write_text(account_url)
		self.account_thumbprint_path.write_text(current_thumbprint)
		_log.info("Registered ACME account: %s", account_url)
		return account_url

	# ─────────────────────────────────────────────────────────────────────
	# Orders, authorizations, challenges
	# ─────────────────────────────────────────────────────────────────────

	async def create_order(self, domain: str) -> AcmeOrder:
		resp = await self._signed_request(
			self.directory["newOrder"],
			{"identifiers": [{"type": "dns", "value": domain}]},
		)
		if resp.status_code not in (200, 201):
			raise AcmeError(f"Failed to create order: {_problem_detail(resp)}", resp.status_code)
		order_url = resp.headers.get("Location")
		if not order_url:
			raise AcmeError("No order URL in response")
		return AcmeOrder(url=order_url, body=resp.json())

	async def _post_as_get(self, url: str, what: str) -> dict:
		resp = await self._signed_request(url, None)
		if resp.status_code != 200:
			raise AcmeError(f"Failed to get {what}: {_problem_detail(resp)}", resp.status_code)
		body = resp.json()
		body.setdefault("url", url)
		return body

	async def get_authorizations(self, order: AcmeOrder) -> list[dict]:
		if not order.authorizations:
			raise AcmeError("No authorizations in order")
		return [await self._post_as_get(url, "authorization") for url in order.authorizations]

	@staticmethod
	def find_http01_challenge(authorization: dict) -> dict | None:
		for challenge in authorization.get("challenges", []):
			if challenge.get("type") == "http-01":
				return challenge
		return None

	def key_authorization(self, challenge: dict) -> str:
		"""Body the validator expects at ``/.well-known/acme-challenge/<token>``."""
		return f"{challenge['token']}.{self._thumbprint()}"

	async def complete_challenge(self, challenge: dict) -> dict:
		"""Tell the authority the challenge response is being served."""
		resp = await self._signed_request(challenge["url"], {})
		if resp.status_code not in (200, 202):
			raise AcmeError(f"Failed to respond to challenge: {_problem_detail(resp)}", resp.status_code)
		return resp.json()

	async def wait_for_valid_status(self, resource: dict | AcmeOrder) -> dict:
		"""Poll a challenge, authorization or order until it is ``valid``."""
		url = resource.url if isinstance(resource, AcmeOrder) else resource["url"]
		for _ in range(self.poll_attempts):
			body = await self._post_as_get(url, "resource status")
			status = body.get("status")
			if status == "valid":
				if isinstance(resource, AcmeOrder):
					body.pop("url", None)
					resource.body = body
				return body
			if status in _FAILED_STATUSES:
				detail = (body.get("error") or {}).get("detail", "")
				raise AcmeError(f"Resource {url} became {status}{': ' + detail if detail else ''}")
			await asyncio.sleep(self.poll_delay)
		raise AcmeError(f"Timeout waiting for {url} to become valid", 408)

	async def finalize_order(self, order: AcmeOrder, csr_der: bytes) -> AcmeOrder:
		if not order.finalize_url:
			raise AcmeError("No finalize URL in order")
		resp = await self._signed_request(order.finalize_url, {"csr": b64url(csr_der)})
		if resp.status_code not in (200, 201):
			raise AcmeError(f"Failed to finalize order: {_problem_detail(resp)}", resp.status_code)
		order.body = resp.json()
		return order

	async def get_order(self, order: AcmeOrder) -> AcmeOrder:
		body = await self._post_as_get(order.url, "order")
		body.pop("url", None)
		return AcmeOrder(url=order.url, body=body)

	async def get_certificate(self, order: AcmeOrder) -> str:
		"""Download the PEM chain of a finalized order, waiting for it if still processing."""
		if order.status != "valid" or not order.certificate_url:
			await self.wait_for_valid_status(order)
		if not order.certificate_url:
			raise AcmeError("No certificate URL in order")
		resp = await self._signed_request(order.certificate_url, None)
		if resp.status_code != 200:
			raise AcmeError(f"Failed to download certificate: {_problem_detail(resp)}", resp.status_code)
		return resp.text
