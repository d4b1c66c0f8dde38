#!/usr/bin/env python3
#
# certcluster/acme/jws.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""JWS/JWK primitives, account-key persistence and CSR generation for ACME."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

_log = logging.getLogger(__name__)


def b64url(data: bytes) -> str:
	"""Base64url encode without padding."""
	return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def jwk_from_key(key: ec.EllipticCurvePrivateKey) -> dict:
	"""Public JWK of a P-256 key (coordinates are 32 bytes each)."""
	numbers = key.public_key().public_numbers()
	return {
		"kty": "EC",
		"crv": "P-256",
		"x": b64url(numbers.x.to_bytes(32, "big")),
		"y": b64url(numbers.y.to_bytes(32, "big")),
	}


def jwk_thumbprint(jwk: dict) -> str:
	"""Calculate JWK thumbprint (RFC 7638)."""
	if "kty" not in jwk:
		raise ValueError("Missing kty in JWK")

	if jwk["kty"] == "EC":
		canonical = {"crv": jwk["crv"], "kty": "EC", "x": jwk["x"], "y": jwk["y"]}
	elif jwk["kty"] == "RSA":
		canonical = {"e": jwk["e"], "kty": "RSA", "n": jwk["n"]}
	else:
		raise ValueError(f"Unsupported key type: {jwk['kty']}")

	canonical_json = json.dumps(canonical, separators=(",", ":"), sort_keys=True)
	return b64url(hashlib.sha256(canonical_json.encode("utf-8")).digest())


def sign_es256(key: ec.EllipticCurvePrivateKey, payload: bytes) -> bytes:
	"""ES256 signature as raw ``r || s`` (32 bytes each)."""
	sig_der = key.sign(payload, ec.ECDSA(hashes.SHA256()))
	r, s = decode_dss_signature(sig_der)
	return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def load_or_create_account_key(path: Path) -> ec.EllipticCurvePrivateKey:
	"""Load the persisted ACME account key, generating a P-256 key on first use."""
	if path.exists():
		key = serialization.load_pem_private_key(path.read_bytes(), password=None)
		if isinstance(key, ec.EllipticCurvePrivateKey):
			return key
		raise ValueError("Account key is not an EC key")

	key = ec.generate_private_key(ec.SECP256R1())
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_bytes(
		key.private_bytes(
			encoding=serialization.Encoding.PEM,
			format=serialization.PrivateFormat.PKCS8,
			encryption_algorithm=serialization.NoEncryption(),
		)
	)
	path.chmod(0o600)
	_log.info("Created new ACME account key at %s", path)
	return key


def create_csr(domain: str) -> tuple[bytes, bytes]:
	"""Generate a fresh RSA-2048 domain key and a CSR for ``domain``.

	Returns:
		(private key PEM, CSR DER). The CSR carries the domain both as CN and
		as SAN, which Let's Encrypt requires.
	"""
	domain_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
	csr = (
		x509.CertificateSigningRequestBuilder()
		.subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
		.add_extension(
			x509.SubjectAlternativeName([x509.DNSName(domain)]),
			critical=False,
		)
		.sign(domain_key, hashes.SHA256())
	)
	key_pem = domain_key.private_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PrivateFormat.PKCS8,
		encryption_algorithm=serialization.NoEncryption(),
	)
	return key_pem, csr.public_bytes(serialization.Encoding.DER)
