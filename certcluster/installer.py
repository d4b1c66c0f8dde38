#!/usr/bin/env python3
#
# certcluster/installer.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Install issued certificates where the serving TLS stack picks them up."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from pathlib import Path

from cryptography import x509
from cryptography.x509.oid import NameOID

from .models.domains import CertificateInfo
from .utils.time import format_utc, utcnow

_log = logging.getLogger(__name__)

__all__ = ["CertificateInstallRequest", "FileCertificateInstaller", "split_pem_chain"]

_PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
_PEM_END = "-----END CERTIFICATE-----"
RENEWAL_THRESHOLD = timedelta(days=30)


@dataclass(frozen=True)
class CertificateInstallRequest:
	"""Payload of the install operation."""
	name: str
	certificate: str
	private_key: str
	is_authority: bool = False
	replicated: bool = True


def split_pem_chain(pem: str) -> list[str]:
	"""Split a PEM bundle into individual certificate blocks (leaf first)."""
	blocks: list[str] = []
	rest = pem
	while _PEM_BEGIN in rest:
		start = rest.find(_PEM_BEGIN)
		end = rest.find(_PEM_END, start)
		if end == -1:
			break
		end += len(_PEM_END)
		blocks.append(rest[start:end])
		rest = rest[end:]
	return blocks


class FileCertificateInstaller:
	"""Writes certificates to ``<certs_dir>/<domain>/`` with an install manifest.

	Layout per domain: ``fullchain.pem``, ``cert.pem``, ``chain.pem`` (when the
	bundle has intermediates), ``privkey.pem`` (0600) and ``install.json``.
	"""

	def __init__(self, certs_dir: Path):
		self.certs_dir = certs_dir

	async def install(self, request: CertificateInstallRequest) -> Path:
		return await asyncio.to_thread(self._install_sync, request)

	def _install_sync(self, request: CertificateInstallRequest) -> Path:
		if not request.name or "/" in request.name or request.name.startswith("."):
			raise ValueError(f"Invalid certificate name: {request.name!r}")

		blocks = split_pem_chain(request.certificate)
		if not blocks:
			raise ValueError(f"No PEM certificate in install request for {request.name}")

		domain_dir = self.certs_dir / request.name
		domain_dir.mkdir(parents=True, exist_ok=True)

		fullchain_path = domain_dir / "fullchain.pem"
		key_path = domain_dir / "privkey.pem"
		fullchain_path.write_text(request.certificate)
		fullchain_path.chmod(0o644)
		# Permissions are tightened before the key appears at its final path
		tmp_key = domain_dir / ".privkey.pem.tmp"
		tmp_key.write_text(request.private_key)
		tmp_key.chmod(0o600)
		tmp_key.replace(key_path)

		(domain_dir / "cert.pem").write_text(blocks[0] + "\n")
		chain_path = domain_dir / "chain.pem"
		if len(blocks) >= 2:
			chain_path.write_text("\n".join(blocks[1:]) + "\n")
		elif chain_path.exists():
			chain_path.unlink()

		manifest = {
			"name": request.name,
			"is_authority": request.is_authority,
			"replicated": request.replicated,
			"installed_at": format_utc(utcnow()),
		}
		(domain_dir / "install.json").write_text(json.dumps(manifest, indent=2))

		_log.info("INSTALL certificate name=%s dir=%s replicated=%s", request.name, domain_dir, request.replicated)
		return domain_dir

	def list_installed(self) -> list[CertificateInfo]:
		"""Describe every installed certificate; unparsable ones are reported bare."""
		certificates: list[CertificateInfo] = []
		if not self.certs_dir.exists():
			return certificates

		now = utcnow()
		for domain_dir in sorted(self.certs_dir.iterdir()):
			cert_path = domain_dir / "fullchain.pem"
			if not domain_dir.is_dir() or domain_dir.name.startswith(".") or not cert_path.exists():
				continue

			manifest: dict = {}
			manifest_path = domain_dir / "install.json"
			if manifest_path.exists():
				try:
					manifest = json.loads(manifest_path.read_text())
				except ValueError:
					_log.warning("Corrupt install manifest %s", manifest_path)

			try:
				cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
			except ValueError as e:
				_log.warning("Failed to parse certificate %s: %s", cert_path, e)
				certificates.append(CertificateInfo(domain=domain_dir.name))
				continue

			expires_at = cert.not_valid_after_utc
			issuer_cn = cert.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)
			certificates.append(CertificateInfo(
				domain=domain_dir.name,
				issued_at=cert.not_valid_before_utc.isoformat(),
				expires_at=expires_at.isoformat(),
				issuer=issuer_cn[0].value if issuer_cn else "Unknown",
				serial=format(cert.serial_number, "x"),
				days_until_expiry=(expires_at - now).days,
				needs_renewal=(expires_at - now) <= RENEWAL_THRESHOLD,
				is_authority=bool(manifest.get("is_authority", False)),
				replicated=bool(manifest.get("replicated", True)),
			))
		return certificates

	def describe(self, request: CertificateInstallRequest) -> dict:
		"""Install payload without key material, for logs and audit."""
		payload = asdict(request)
		payload["private_key"] = "<redacted>"
		payload["certificate"] = f"<{len(split_pem_chain(request.certificate))} certificate(s)>"
		return payload
