#!/usr/bin/env python3
#
# certcluster/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response envelope."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


def _dump(value: Any) -> Any:
	if isinstance(value, BaseModel):
		return value.model_dump(mode="json")
	if isinstance(value, list):
		return [_dump(item) for item in value]
	return value


def ok_response(
	*,
	message: str | None = None,
	data: Any = None,
	**extra: Any,
) -> dict[str, Any]:
	"""Build a ``{"status": "ok", ...}`` payload; Pydantic models are serialized."""
	payload: dict[str, Any] = {"status": "ok"}
	if message is not None:
		payload["message"] = message
	if data is not None:
		payload["data"] = _dump(data)
	if extra:
		payload.update({key: _dump(value) for key, value in extra.items()})
	return payload
