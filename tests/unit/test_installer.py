#!/usr/bin/env python3
#
# tests/unit/test_installer.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import json
import stat
from datetime import timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certcluster.installer import CertificateInstallRequest, FileCertificateInstaller, split_pem_chain
from certcluster.utils.time import utcnow


def _self_signed(common_name: str, days: int) -> tuple[str, str]:
	key = ec.generate_private_key(ec.SECP256R1())
	name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
	now = utcnow()
	cert = (
		x509.CertificateBuilder()
		.subject_name(name)
		.issuer_name(name)
		.public_key(key.public_key())
		.serial_number(0xC0FFEE)
		.not_valid_before(now - timedelta(days=1))
		.not_valid_after(now + timedelta(days=days))
		.sign(key, hashes.SHA256())
	)
	cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode()
	key_pem = key.private_bytes(
		serialization.Encoding.PEM,
		serialization.PrivateFormat.PKCS8,
		serialization.NoEncryption(),
	).decode()
	return cert_pem, key_pem


def test_split_pem_chain():
	leaf, _ = _self_signed("leaf", 90)
	intermediate, _ = _self_signed("R3", 365)
	blocks = split_pem_chain(leaf + intermediate)
	assert len(blocks) == 2
	assert blocks[0].startswith("-----BEGIN CERTIFICATE-----")
	assert split_pem_chain("garbage") == []


@pytest.mark.asyncio
async def test_install_writes_layout_and_manifest(tmp_path):
	leaf, key = _self_signed("example.com", 90)
	intermediate, _ = _self_signed("Fake Intermediate", 365)
	installer = FileCertificateInstaller(tmp_path / "certs")

	domain_dir = await installer.install(CertificateInstallRequest(
		name="example.com",
		certificate=leaf + intermediate,
		private_key=key,
	))

	assert (domain_dir / "fullchain.pem").read_text() == leaf + intermediate
	assert (domain_dir / "privkey.pem").read_text() == key
	assert stat.S_IMODE((domain_dir / "privkey.pem").stat().st_mode) == 0o600
	assert (domain_dir / "chain.pem").exists()
	assert not (domain_dir / ".privkey.pem.tmp").exists()
	manifest = json.loads((domain_dir / "install.json").read_text())
	assert manifest["is_authority"] is False
	assert manifest["replicated"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "../etc", ".hidden"])
async def test_install_rejects_unsafe_names(tmp_path, name):
	leaf, key = _self_signed("example.com", 90)
	installer = FileCertificateInstaller(tmp_path / "certs")
	with pytest.raises(ValueError):
		await installer.install(CertificateInstallRequest(name=name, certificate=leaf, private_key=key))


@pytest.mark.asyncio
async def test_list_installed_reports_expiry(tmp_path):
	installer = FileCertificateInstaller(tmp_path / "certs")
	assert installer.list_installed() == []

	for name, days in (("fresh.example.com", 80), ("expiring.example.com", 10)):
		leaf, key = _self_signed(name, days)
		await installer.install(CertificateInstallRequest(name=name, certificate=leaf, private_key=key))

	infos = {info.domain: info for info in installer.list_installed()}
	assert infos["fresh.example.com"].needs_renewal is False
	assert infos["expiring.example.com"].needs_renewal is True
	assert infos["fresh.example.com"].serial == "c0ffee"
	assert infos["fresh.example.com"].issuer == "fresh.example.com"
	assert 78 <= infos["fresh.example.com"].days_until_expiry <= 80


def test_describe_redacts_key_material(tmp_path):
	request = CertificateInstallRequest(name="example.com", certificate="x", private_key="secret")
	described = FileCertificateInstaller(tmp_path).describe(request)
	assert described["private_key"] == "<redacted>"
	assert "secret" not in json.dumps(described)
