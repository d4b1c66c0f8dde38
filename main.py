#!/usr/bin/env python3
#
# main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

# CertCluster - ACME HTTP-01 certificate lifecycle coordinator
# Development launcher; production runs uvicorn/gunicorn against certcluster:create_app
#

import os

import uvicorn
from certcluster.main import LOG_DATEFMT, LOG_FORMAT
from certcluster.utils.config import load_config


def uvicorn_log_config(level: str) -> dict:
	"""dictConfig for uvicorn's own loggers, matching the application format."""
	formatter = {"format": LOG_FORMAT, "datefmt": LOG_DATEFMT}
	return {
		"version": 1,
		"disable_existing_loggers": False,
		"formatters": {"plain": formatter},
		"handlers": {
			"server": {"class": "logging.StreamHandler", "formatter": "plain", "stream": "ext://sys.stderr"},
			"requests": {"class": "logging.StreamHandler", "formatter": "plain", "stream": "ext://sys.stdout"},
		},
		"loggers": {
			"uvicorn": {"handlers": ["server"], "level": level, "propagate": False},
			"uvicorn.error": {"level": level},
			"uvicorn.access": {"handlers": ["requests"], "level": level, "propagate": False},
		},
	}


if __name__ == "__main__":
	cfg = load_config()
	uvicorn.run(
		"certcluster:create_app",
		factory=True,
		host=cfg.host,
		port=cfg.port,
		reload=os.environ.get("CERTCLUSTER_DEV_RELOAD", "").lower() in ("1", "true", "yes"),
		log_config=uvicorn_log_config(cfg.log_level.upper()),
	)
