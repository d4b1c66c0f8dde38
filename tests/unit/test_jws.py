#!/usr/bin/env python3
#
# tests/unit/test_jws.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import stat

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.x509.oid import NameOID

from certcluster.acme.jws import (
	b64url,
	create_csr,
	jwk_from_key,
	jwk_thumbprint,
	load_or_create_account_key,
	sign_es256,
)


def test_b64url_strips_padding():
	assert b64url(b"\xfb\xff") == "-_8"
	assert "=" not in b64url(b"a")


def test_rfc7638_thumbprint_example():
	jwk = {
		"kty": "RSA",
		"e": "AQAB",
		"n": (
			"0vx7agoebGcQSuuPiLJXZptN9nndrQmbXEps2aiAFbWhM78LhWx4cbbfAAtVT86zwu1RK7aPFFxuhDR1L6tSoc_BJECP"
			"ebWKRXjBZCiFV4n3oknjhMstn64tZ_2W-5JsGY4Hc5n9yBXArwl93lqt7_RN5w6Cf0h4QyQ5v-65YGjQR0_FDW2Qvz"
			"qY368QQMicAtaSqzs8KJZgnYb9c7d0zgdAZHzu6qMQvRL5hajrn1n91CbOpbISD08qNLyrdkt-bFTWhAI4vMQFh6WeZu"
			"0fM4lFd2NcRwr3XPksINHaQ-G_xBniIqbw0Ls1jF44-csFCur-kEgU8awapJzKnqDKgw"
		),
	}
	assert jwk_thumbprint(jwk) == "NzbLsXh8uDCcd-6MNwXF4W_7noWXFZAfHkxZsRGC9Xs"


def test_thumbprint_rejects_unknown_key_type():
	with pytest.raises(ValueError):
		jwk_thumbprint({"kty": "oct", "k": "secret"})


def test_es256_signature_verifies():
	key = ec.generate_private_key(ec.SECP256R1())
	signature = sign_es256(key, b"payload")
	assert len(signature) == 64

	r = int.from_bytes(signature[:32], "big")
	s = int.from_bytes(signature[32:], "big")
	key.public_key().verify(encode_dss_signature(r, s), b"payload", ec.ECDSA(hashes.SHA256()))

	jwk = jwk_from_key(key)
	assert jwk["kty"] == "EC" and jwk["crv"] == "P-256"


def test_account_key_is_persisted_privately(tmp_path):
	path = tmp_path / "acme" / "account_key.pem"
	first = load_or_create_account_key(path)
	second = load_or_create_account_key(path)

	assert stat.S_IMODE(path.stat().st_mode) == 0o600
	assert jwk_from_key(first) == jwk_from_key(second)


def test_csr_carries_domain_as_cn_and_san():
	key_pem, csr_der = create_csr("example.com")
	csr = x509.load_der_x509_csr(csr_der)

	assert csr.is_signature_valid
	assert csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "example.com"
	san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
	assert san.get_values_for_type(x509.DNSName) == ["example.com"]
	key = serialization.load_pem_private_key(key_pem, password=None)
	assert key.key_size == 2048
