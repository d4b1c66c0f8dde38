#!/usr/bin/env python3
#
# certcluster/cluster/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Cluster coordination: challenge-leader election."""

from .leader import Election, LeaderElector, elect_leader

__all__ = ["Election", "LeaderElector", "elect_leader"]
