#!/usr/bin/env python3
#
# certcluster/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Record types and Pydantic models for CertCluster."""

from .records import (
	ChangeEvent,
	ClusterNode,
	Condition,
	DomainCertificateRecord,
)
from .domains import (
	CertificateInfo,
	ClusterNodeCreate,
	ClusterNodePublic,
	DomainCreate,
	DomainPublic,
)

__all__ = [
	# Records
	"ChangeEvent",
	"ClusterNode",
	"Condition",
	"DomainCertificateRecord",
	# API
	"CertificateInfo",
	"ClusterNodeCreate",
	"ClusterNodePublic",
	"DomainCreate",
	"DomainPublic",
]
