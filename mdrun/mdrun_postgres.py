"""
Locates a psql client: the local binary, or one inside a running Docker container.
"""

import logging
import os
import shutil
import subprocess
from typing import List, Optional

from mdrun.mdrun_datatypes import MissingInterpreterError

logger = logging.getLogger(__name__)

PG_ENV_VARS = ("PGUSER", "PGPASSWORD", "PGDATABASE", "PGHOST", "PGPORT")
REQUIRED_DOCKER_ENV_VARS = ("PGUSER", "PGDATABASE")

_cached_command: Optional[List[str]] = None


def reset_cache() -> None:
    global _cached_command
    _cached_command = None


def _docker_output(args: List[str]) -> str:
    try:
        proc = subprocess.run(["docker"] + args, capture_output=True, text=True, timeout=15)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"docker {' '.join(args)} failed: {e}")
        return ""
    return proc.stdout.strip() if proc.returncode == 0 else ""


def find_postgres_container() -> Optional[str]:
    for filter_arg in ("ancestor=postgres", "name=postgres"):
        out = _docker_output(["ps", "--filter", filter_arg, "--format", "{{.ID}}"])
        if out:
            return out.splitlines()[0]
    # Last resort: any running container that ships psql
    for container_id in _docker_output(["ps", "--format", "{{.ID}}"]).splitlines():
        try:
            proc = subprocess.run(
                ["docker", "exec", container_id, "which", "psql"],
                capture_output=True, timeout=15,
            )
        except (OSError, subprocess.SubprocessError):
            continue
        if proc.returncode == 0:
            return container_id
    return None


def docker_env_flags() -> List[str]:
    flags: List[str] = []
    for var in PG_ENV_VARS:
        value = os.environ.get(var)
        if value is not None:
            flags += ["-e", f"{var}={value}"]
    return flags


def detect_psql_command() -> Optional[List[str]]:
    if shutil.which("psql"):
        return ["psql"]
    if not shutil.which("docker"):
        return None
    container_id = find_postgres_container()
    if not container_id:
        return None
    logger.info(f"Using psql from Docker container {container_id}")
    return ["docker", "exec", "-i", "-u", "postgres"] + docker_env_flags() + [container_id, "psql"]


def using_docker(command: List[str]) -> bool:
    return bool(command) and command[0] == "docker"


def psql_command() -> List[str]:
    """Return the cached psql program prefix; raise if none is usable."""
    global _cached_command
    if _cached_command is None:
        _cached_command = detect_psql_command()
    command = _cached_command
    if command is None:
        raise MissingInterpreterError(
            "psql", "psql", "Please install PostgreSQL or ensure psql is in your PATH."
        )
    if using_docker(command):
        missing = [var for var in REQUIRED_DOCKER_ENV_VARS if not os.environ.get(var)]
        if missing:
            raise MissingInterpreterError(
                "psql", "psql",
                f"PostgreSQL is running in Docker but required environment variables are missing: {', '.join(missing)}.",
            )
    return list(command)
