#!/usr/bin/env python3
#
# certcluster/middleware/challenge.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Serve ACME HTTP-01 challenge responses straight from the record store."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..models.records import Condition

_log = logging.getLogger(__name__)

CHALLENGE_PREFIX = "/.well-known/acme-challenge/"
# "", ".well-known", "acme-challenge", token
_EXPECTED_SEGMENTS = 4
SAFE_METHODS = {"GET", "HEAD"}


def extract_token(path: str) -> str | None:
	"""Return the challenge token of a well-known path, or None if it is not one."""
	if not path.startswith(CHALLENGE_PREFIX):
		return None
	parts = path.split("/")
	if len(parts) != _EXPECTED_SEGMENTS or not parts[-1]:
		return None
	return parts[-1]


class ChallengeResponderMiddleware(BaseHTTPMiddleware):
	"""Answers ``/.well-known/acme-challenge/<token>`` for any node in the cluster.

	The token is looked up in the shared record store, so the node that
	published a challenge need not be the one the validator reaches. Requests
	that do not match, or match no published content, continue down the chain
	untouched.
	"""

	def __init__(self, app: ASGIApp):
		super().__init__(app)

	async def dispatch(self, request: Request, call_next: Callable) -> Response:
		if request.method not in SAFE_METHODS:
			return await call_next(request)

		token = extract_token(request.url.path)
		store = getattr(request.app.state, "store", None)
		if token is None or store is None:
			return await call_next(request)

		async for record in store.search(Condition("challenge_token", "equal", token)):
			if record.challenge_content:
				_log.info("CHALLENGE served domain=%s token=%s", record.domain, token)
				return PlainTextResponse(record.challenge_content, status_code=200)

		_log.debug("CHALLENGE no content for token=%s, passing through", token)
		return await call_next(request)
