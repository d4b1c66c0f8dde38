#!/usr/bin/env python3
#
# certcluster/models/records.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Record-store value types: domain records, cluster nodes, change events."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Literal, Optional

from ..utils.time import format_utc, parse_utc

Comparator = Literal[
	"equal",
	"not_equal",
	"less_than",
	"less_than_equal",
	"greater_than",
	"greater_than_equal",
]

# Fields a store write may touch (``domain`` is the immutable key)
MUTABLE_FIELDS = frozenset({
	"challenge_token",
	"challenge_content",
	"issue_date",
	"renewal_date",
	"in_progress",
})


@dataclass(frozen=True)
class DomainCertificateRecord:
	"""Certificate lifecycle state of one domain."""
	domain: str
	challenge_token: Optional[str] = None
	challenge_content: Optional[str] = None
	issue_date: Optional[datetime] = None
	renewal_date: Optional[datetime] = None
	in_progress: bool = False

	@property
	def is_fresh(self) -> bool:
		"""True for a newly registered domain nothing has touched yet."""
		return (
			bool(self.domain)
			and not self.challenge_token
			and self.issue_date is None
			and not self.in_progress
		)

	def to_snapshot(self) -> dict[str, Any]:
		return {
			"domain": self.domain,
			"challenge_token": self.challenge_token,
			"challenge_content": self.challenge_content,
			"issue_date": format_utc(self.issue_date),
			"renewal_date": format_utc(self.renewal_date),
			"in_progress": self.in_progress,
		}

	@classmethod
	def from_snapshot(cls, data: dict[str, Any]) -> DomainCertificateRecord:
		known = {f.name for f in fields(cls)}
		values = {k: v for k, v in data.items() if k in known}
		values["issue_date"] = parse_utc(values.get("issue_date"))
		values["renewal_date"] = parse_utc(values.get("renewal_date"))
		values["in_progress"] = bool(values.get("in_progress", False))
		return cls(**values)


@dataclass(frozen=True)
class ClusterNode:
	"""A cluster member as listed in the store's system namespace."""
	name: str
	added_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChangeEvent:
	"""One entry of the change feed: the record as it looked after a write."""
	seq: int
	value: DomainCertificateRecord
	changed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Condition:
	"""A single search predicate; multiple conditions are AND-ed."""
	attribute: str
	comparator: Comparator = "equal"
	value: Any = field(default=None)
