"""Settings loaded from environment variables and an optional .env file."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path

from trello2planner.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_SCOPES = "User.Read Group.ReadWrite.All Tasks.ReadWrite Files.ReadWrite.All"


@dataclass
class Settings:
    trello_api_key: str
    trello_token: str
    client_id: str
    tenant_id: str = "common"
    graph_scopes: str = DEFAULT_GRAPH_SCOPES
    download_path: str = "./data"
    trello_rate_limit: int = 9
    graph_rate_limit: int = 9
    max_workers: int = 16
    verify_ssl: bool = True

    @property
    def scopes(self) -> list[str]:
        return self.graph_scopes.split()


def load_env_file(
    path: str | Path, environ: MutableMapping[str, str] | None = None
) -> int:
    """Load ``KEY=VALUE`` lines into the environment without overriding it.

    Blank lines and ``#`` comments are ignored, an optional ``export`` prefix
    is accepted and matching surrounding quotes are stripped.

    Returns:
        Number of variables set
    """
    environ = os.environ if environ is None else environ
    path = Path(path)
    if not path.is_file():
        return 0

    count = 0
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            if line.startswith("export "):
                line = line[len("export ") :]
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            if key and key not in environ:
                environ[key] = value
                count += 1

    logger.debug("Loaded %d variables from %s", count, path)
    return count


def _positive_int(environ: Mapping[str, str], name: str, default: int, errors: list[str]) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer (got {raw!r})")
        return default
    if value < 1:
        errors.append(f"{name} must be positive (got {value})")
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build ``Settings`` from the environment.

    Raises:
        ConfigurationError: Listing every missing required variable and every
            malformed numeric value
    """
    if environ is None:
        load_env_file(os.environ.get("TRELLO2PLANNER_ENV_FILE", ".env"))
        environ = os.environ

    errors: list[str] = []
    required = {
        "TRELLO_API_KEY": environ.get("TRELLO_API_KEY", "").strip(),
        "TRELLO_TOKEN": environ.get("TRELLO_TOKEN", "").strip(),
        "GRAPH_CLIENT_ID": environ.get("GRAPH_CLIENT_ID", "").strip(),
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        errors.append(f"Missing required environment variables: {', '.join(missing)}")

    trello_rate_limit = _positive_int(environ, "TRELLO_RATE_LIMIT", 9, errors)
    graph_rate_limit = _positive_int(environ, "GRAPH_RATE_LIMIT", 9, errors)
    max_workers = _positive_int(environ, "MAX_WORKERS", 16, errors)

    if errors:
        raise ConfigurationError("\n".join(errors))

    return Settings(
        trello_api_key=required["TRELLO_API_KEY"],
        trello_token=required["TRELLO_TOKEN"],
        client_id=required["GRAPH_CLIENT_ID"],
        tenant_id=environ.get("GRAPH_TENANT_ID") or "common",
        graph_scopes=environ.get("GRAPH_SCOPES") or DEFAULT_GRAPH_SCOPES,
        download_path=environ.get("DOWNLOAD_PATH") or "./data",
        trello_rate_limit=trello_rate_limit,
        graph_rate_limit=graph_rate_limit,
        max_workers=max_workers,
    )
