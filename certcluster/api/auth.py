#!/usr/bin/env python3
#
# certcluster/api/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Bearer-token guard for the admin API."""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

_log = logging.getLogger(__name__)
_security = HTTPBearer(auto_error=False)


def require_api_token(
	request: Request,
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
) -> None:
	"""FastAPI dependency that enforces the configured admin token."""
	if not credentials or not credentials.credentials:
		raise HTTPException(status_code=401, detail="Not authenticated")

	expected = request.app.state.cfg.api_token
	if not expected or not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
		client_ip = request.client.host if request.client else "unknown"
		_log.warning("AUTH rejected token ip=%s path=%s", client_ip, request.url.path)
		raise HTTPException(status_code=401, detail="Invalid token")
