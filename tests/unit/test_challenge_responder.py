#!/usr/bin/env python3
#
# tests/unit/test_challenge_responder.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from certcluster.middleware.challenge import ChallengeResponderMiddleware, extract_token


@pytest_asyncio.fixture
async def client(store):
	app = FastAPI()
	app.add_middleware(ChallengeResponderMiddleware)
	app.state.store = store

	@app.api_route("/{path:path}", methods=["GET", "HEAD", "POST"])
	async def fallthrough(path: str):
		return PlainTextResponse("next handler", status_code=404)

	await store.create("example.com")
	await store.patch("example.com", challenge_token="tok-123", challenge_content="tok-123.thumbprint")
	await store.create("pending.example.com")
	await store.patch("pending.example.com", challenge_token="tok-empty")

	transport = httpx.ASGITransport(app=app)
	async with httpx.AsyncClient(transport=transport, base_url="http://node-b") as c:
		yield c


@pytest.mark.parametrize("path, token", [
	("/.well-known/acme-challenge/abc", "abc"),
	("/.well-known/acme-challenge/", None),
	("/.well-known/acme-challenge/abc/extra", None),
	("/.well-known/other/abc", None),
	("/index.html", None),
])
def test_extract_token(path, token):
	assert extract_token(path) == token


@pytest.mark.asyncio
async def test_serves_published_content(client):
	resp = await client.get("/.well-known/acme-challenge/tok-123")
	assert resp.status_code == 200
	assert resp.text == "tok-123.thumbprint"
	assert resp.headers["content-type"].startswith("text/plain")


@pytest.mark.asyncio
async def test_unknown_token_passes_through(client):
	resp = await client.get("/.well-known/acme-challenge/nope")
	assert resp.status_code == 404
	assert resp.text == "next handler"


@pytest.mark.asyncio
async def test_token_without_content_passes_through(client):
	resp = await client.get("/.well-known/acme-challenge/tok-empty")
	assert resp.text == "next handler"


@pytest.mark.asyncio
async def test_extra_segment_passes_through(client):
	resp = await client.get("/.well-known/acme-challenge/tok-123/extra")
	assert resp.text == "next handler"


@pytest.mark.asyncio
async def test_unrelated_paths_are_untouched(client):
	resp = await client.get("/status")
	assert resp.text == "next handler"


@pytest.mark.asyncio
async def test_post_is_not_answered(client):
	resp = await client.post("/.well-known/acme-challenge/tok-123")
	assert resp.text == "next handler"
