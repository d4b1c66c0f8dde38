#!/usr/bin/env python3
#
# certcluster/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Runtime settings for a CertCluster node.

Everything comes from ``CERTCLUSTER_*`` environment variables, optionally seeded
from a ``settings.env`` file next to the project root.
"""

from __future__ import annotations

import logging
import os
import socket
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

_log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
	"""A setting is missing, malformed or points at an unusable path."""


# Let's Encrypt endpoints
ACME_DIRECTORY_PROD = "https://acme-v02.api.letsencrypt.org/directory"
ACME_DIRECTORY_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
	"""Settings resolved once per process; see ``get_config``."""
	base_dir: Path
	data_dir: Path
	db_path: Path
	certs_dir: Path
	acme_state_dir: Path
	hostname: str
	acme_directory: str
	acme_email: str = ""
	register_node: bool = False
	api_token: str = ""
	host: str = "0.0.0.0"
	port: int = 8000
	log_level: str = "INFO"
	settle_delay: float = 60.0
	stagger_step: float = 60.0
	retry_attempts: int = 5
	retry_base_delay: float = 120.0
	renewal_interval: float = 43200.0
	feed_poll_interval: float = 1.0

	@property
	def is_staging(self) -> bool:
		return self.acme_directory == ACME_DIRECTORY_STAGING


_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _unquote(value: str) -> str:
	value = value.strip()
	quote = value[:1]
	if quote in ("'", '"'):
		closing = value.find(quote, 1)
		if closing > 0:
			return value[1:closing]
	# Unquoted: a " #" starts a trailing comment
	return value.partition(" #")[0].strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Copy ``KEY=VALUE`` lines from a settings file into ``os.environ``.

	``export`` prefixes and ``#`` comment lines are accepted. Variables already
	present in the environment win over the file.
	"""
	path = dotenv_path or _PROJECT_ROOT / "settings.env"
	if not path.is_file():
		return
	for line in path.read_text(encoding="utf-8").splitlines():
		line = line.strip()
		if line.startswith("#"):
			continue
		key, sep, value = line.partition("=")
		key = key.strip()
		if key.startswith("export "):
			key = key[len("export "):].strip()
		if sep and key:
			os.environ.setdefault(key, _unquote(value))


def _env_bool(name: str, default: bool = False) -> bool:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	return raw.strip().lower() in _TRUTHY


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	try:
		value = float(raw)
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be a number, got {raw!r}") from exc
	if value < minimum:
		raise ConfigValidationError(f"{name} must be ≥ {minimum}, got {value}")
	return value


def _env_int(name: str, default: int, *, minimum: int = 0, maximum: int = 65535) -> int:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	try:
		value = int(raw)
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be an integer, got {raw!r}") from exc
	if not minimum <= value <= maximum:
		raise ConfigValidationError(f"{name} must be between {minimum} and {maximum}, got {value}")
	return value


def _ensure_dirs(*dirs: Path) -> None:
	for path in dirs:
		if path.exists() and not path.is_dir():
			raise ConfigValidationError(f"{path} exists and is not a directory")
		try:
			path.mkdir(parents=True, exist_ok=True)
		except OSError as exc:
			raise ConfigValidationError(f"Cannot create {path}: {exc}") from exc


def _api_token() -> str:
	token = os.getenv("CERTCLUSTER_API_TOKEN", "").strip()
	if token:
		return token
	if "PYTEST_CURRENT_TEST" in os.environ or "pytest" in sys.modules:
		_log.debug("CONFIG no API token set, using the test placeholder")
		return "test-only-token-do-not-use-in-production"
	raise ConfigValidationError(
		"CERTCLUSTER_API_TOKEN must be set; create one with "
		"`openssl rand -base64 32` and export it before starting the node"
	)


def load_config() -> Config:
	"""Build a fresh :class:`Config` from the environment (and ``settings.env``)."""
	load_dotenv()

	data_dir = Path(os.getenv("CERTCLUSTER_DATA_DIR") or _PROJECT_ROOT / "data").resolve()
	certs_dir = data_dir / "certs"
	acme_state_dir = data_dir / "acme"
	_ensure_dirs(data_dir, certs_dir, acme_state_dir)

	log_level = os.getenv("LOG_LEVEL", "INFO").upper()
	if log_level not in _LOG_LEVELS:
		log_level = "INFO"

	acme_directory = os.getenv("CERTCLUSTER_ACME_DIRECTORY", "").strip() or (
		ACME_DIRECTORY_STAGING if _env_bool("CERTCLUSTER_ACME_STAGING") else ACME_DIRECTORY_PROD
	)

	return Config(
		base_dir=_PROJECT_ROOT,
		data_dir=data_dir,
		db_path=data_dir / "certcluster.db",
		certs_dir=certs_dir,
		acme_state_dir=acme_state_dir,
		hostname=os.getenv("CERTCLUSTER_HOSTNAME", "").strip() or socket.gethostname(),
		acme_directory=acme_directory,
		acme_email=os.getenv("CERTCLUSTER_ACME_EMAIL", "").strip(),
		register_node=_env_bool("CERTCLUSTER_REGISTER_NODE"),
		api_token=_api_token(),
		host=os.getenv("CERTCLUSTER_HOST", "0.0.0.0"),
		port=_env_int("CERTCLUSTER_PORT", 8000, minimum=1),
		log_level=log_level,
		settle_delay=_env_float("CERTCLUSTER_SETTLE_DELAY", 60.0),
		stagger_step=_env_float("CERTCLUSTER_STAGGER_STEP", 60.0),
		retry_attempts=_env_int("CERTCLUSTER_RETRY_ATTEMPTS", 5, maximum=20),
		retry_base_delay=_env_float("CERTCLUSTER_RETRY_BASE_DELAY", 120.0),
		renewal_interval=_env_float("CERTCLUSTER_RENEWAL_INTERVAL", 43200.0, minimum=1.0),
		feed_poll_interval=_env_float("CERTCLUSTER_FEED_POLL_INTERVAL", 1.0, minimum=0.05),
	)


_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
	"""Process-wide settings, loaded on first use."""
	global _config
	if _config is not None:
		return _config
	with _config_lock:
		if _config is None:
			_config = load_config()
		return _config


def reset_config() -> None:
	"""Forget the cached settings so the next ``get_config`` reloads them."""
	global _config
	with _config_lock:
		_config = None
