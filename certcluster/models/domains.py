#!/usr/bin/env python3
#
# certcluster/models/domains.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Domain and cluster-node Pydantic models for the admin API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .records import ClusterNode, DomainCertificateRecord

# RFC 1123 hostname
DOMAIN_PATTERN = r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$"


class DomainCreate(BaseModel):
	"""Domain registration payload."""
	domain: str = Field(..., min_length=1, max_length=253, pattern=DOMAIN_PATTERN)

	@field_validator("domain")
	@classmethod
	def lowercase(cls, v: str) -> str:
		return v.lower()


class DomainPublic(BaseModel):
	"""Public domain record representation."""
	domain: str
	challenge_token: Optional[str] = None
	has_challenge_content: bool = False
	issue_date: Optional[datetime] = None
	renewal_date: Optional[datetime] = None
	in_progress: bool = False

	@classmethod
	def from_record(cls, record: DomainCertificateRecord) -> DomainPublic:
		# Challenge content is a key authorization; only expose that one exists
		return cls(
			domain=record.domain,
			challenge_token=record.challenge_token,
			has_challenge_content=bool(record.challenge_content),
			issue_date=record.issue_date,
			renewal_date=record.renewal_date,
			in_progress=record.in_progress,
		)


class ClusterNodeCreate(BaseModel):
	"""Cluster member registration payload."""
	name: str = Field(..., min_length=1, max_length=253)


class ClusterNodePublic(BaseModel):
	name: str
	added_at: Optional[datetime] = None

	@classmethod
	def from_node(cls, node: ClusterNode) -> ClusterNodePublic:
		return cls(name=node.name, added_at=node.added_at)


class CertificateInfo(BaseModel):
	"""Installed certificate information."""
	domain: str
	issued_at: Optional[str] = None
	expires_at: Optional[str] = None
	issuer: Optional[str] = None
	serial: Optional[str] = None
	days_until_expiry: Optional[int] = None
	needs_renewal: bool = False
	is_authority: bool = False
	replicated: bool = True
