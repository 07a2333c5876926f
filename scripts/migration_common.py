#!/usr/bin/env python3
"""
Shared plumbing for the V1 -> V2 migration scripts.

- Loads migration.yml (bucket, datasets, pull request settings)
- Builds a requests session with retry/backoff for flaky storage endpoints
- The exception classes the scripts raise
"""

import os
import pathlib
from typing import Any, Dict, Optional

import requests
import yaml
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

ROOT = pathlib.Path(__file__).resolve().parents[1]  # repo root
CONFIG = ROOT / "migration.yml"
PROPOSAL_FILE = pathlib.Path(".cache") / "proposal.json"  # relative to the repo root

USER_AGENT = "stacks-v1-v2-migration/1.0 (+github.com/blockstack/stacks-blockchain)"


class MigrationError(RuntimeError):
    """Base class for failures that abort a migration run."""


class ConfigError(MigrationError):
    pass


class MetadataError(MigrationError):
    pass


class ChecksumError(MigrationError):
    pass


def ensure_dir(p: pathlib.Path) -> None:
    p.mkdir(parents=True, exist_ok=True)

# -------------------------- robust HTTP ------------------------------------

def http_timeout() -> float:
    return float(os.getenv("MIGRATION_HTTP_TIMEOUT", "90"))

def make_session() -> requests.Session:
    s = requests.Session()
    retries = int(os.getenv("MIGRATION_HTTP_RETRIES", "6"))
    backoff = float(os.getenv("MIGRATION_HTTP_BACKOFF", "0.8"))
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD", "OPTIONS"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=8)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    s.headers["User-Agent"] = USER_AGENT
    return s

# ------------------------ config -------------------------------------------

REQUIRED_SECTIONS = ("project", "bucket", "datasets", "pull_request")

def load_config(path: Optional[pathlib.Path] = None) -> Dict[str, Any]:
    """Read migration.yml; MIGRATION_CONFIG overrides the default location."""
    if path is None:
        path = pathlib.Path(os.getenv("MIGRATION_CONFIG", str(CONFIG)))
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"config file {path} is not valid YAML: {e}") from e

    missing = [s for s in REQUIRED_SECTIONS if s not in cfg]
    if missing:
        raise ConfigError(f"config file {path} is missing sections: {', '.join(missing)}")
    names = [d.get("name") for d in cfg["datasets"]]
    if not all(names) or len(set(names)) != len(names):
        raise ConfigError("every dataset needs a unique 'name'")
    for d in cfg["datasets"]:
        cov = d.get("covers")
        if cov is not None and cov not in names:
            raise ConfigError(f"dataset {d['name']} covers unknown dataset {cov}")
    return cfg
