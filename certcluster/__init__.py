#!/usr/bin/env python3
#
# certcluster/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""CertCluster – ACME HTTP-01 certificate lifecycle coordinator for node clusters."""

from .main import create_app

__all__ = ["create_app"]
