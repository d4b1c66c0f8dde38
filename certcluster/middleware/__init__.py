#!/usr/bin/env python3
#
# certcluster/middleware/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Middleware modules for CertCluster."""

from .challenge import ChallengeResponderMiddleware

__all__ = ["ChallengeResponderMiddleware"]
