#!/usr/bin/env python3
#
# certcluster/acme/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME v2 client used to drive HTTP-01 validation."""

from .client import ACMEClient, AcmeError, AcmeOrder, ChallengeUnavailableError
from .jws import create_csr

__all__ = [
	"ACMEClient",
	"AcmeError",
	"AcmeOrder",
	"ChallengeUnavailableError",
	"create_csr",
]
