# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog Deployment Detection

Works out how this instance was deployed (Docker Compose, plain Docker or
a git checkout) so the dashboard can show the right update instructions.
For plain Docker the running container's port, volumes and environment
are read back with ``docker inspect``.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

COMPOSE_ENV_VARS = ("COMPOSE_PROJECT_NAME", "COMPOSE_SERVICE", "COMPOSE_FILE")
COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")
DOCKERENV_PATH = Path("/.dockerenv")

DEFAULT_CONTAINER_NAME = "gamelog"
DEFAULT_HOST_PORT = "8081"
CONTAINER_PORT = "8080/tcp"
INSPECT_TIMEOUT = 10  # seconds


class DeploymentMethod(str, Enum):
    """How the running instance was deployed."""
    COMPOSE = "compose"
    DOCKER = "docker"
    GIT = "git"


@dataclass
class ContainerConfig:
    """Settings of the running container, as reported by docker inspect."""
    port: str = DEFAULT_HOST_PORT
    volumes: List[str] = field(default_factory=lambda: ["data:/app/data"])
    env_vars: List[str] = field(default_factory=list)
    name: str = DEFAULT_CONTAINER_NAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port": self.port,
            "volumes": list(self.volumes),
            "envVars": list(self.env_vars),
            "name": self.name,
        }


# =============================================================================
# DETECTION
# =============================================================================

def detect_deployment_method(
    app_dir: Path,
    environment: str = "production",
    dockerenv: Optional[Path] = None,
) -> DeploymentMethod:
    """Guess the deployment method from the environment and marker files.

    Checked in order: Compose env vars, the Docker ``/.dockerenv`` marker,
    a compose file in ``app_dir``, a ``.git`` directory in ``app_dir``.
    With no marker, production means Docker and anything else means git.
    """
    if any(os.environ.get(name) for name in COMPOSE_ENV_VARS):
        return DeploymentMethod.COMPOSE

    try:
        if (dockerenv or DOCKERENV_PATH).exists():
            return DeploymentMethod.DOCKER
        if any((app_dir / name).exists() for name in COMPOSE_FILES):
            return DeploymentMethod.COMPOSE
        if (app_dir / ".git").exists():
            return DeploymentMethod.GIT
    except OSError as e:
        logger.warning("Deployment marker check failed: %s", e)

    if environment == "production":
        return DeploymentMethod.DOCKER
    return DeploymentMethod.GIT


async def _inspect_container(name: str) -> Optional[str]:
    """Raw ``docker inspect`` JSON for a container, or None if unavailable."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "docker", "inspect", name, "--format", "{{json .}}",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=INSPECT_TIMEOUT)
    except (OSError, asyncio.TimeoutError) as e:
        logger.info("docker inspect unavailable: %s", e)
        return None

    if proc.returncode != 0:
        return None
    return stdout.decode(errors="replace").strip() or None


def parse_container_config(raw: str) -> ContainerConfig:
    """Extract port, volumes and environment from ``docker inspect`` JSON."""
    data = json.loads(raw)
    host_config = data.get("HostConfig") or {}
    network = data.get("NetworkSettings") or {}

    port = DEFAULT_HOST_PORT
    bindings = (network.get("Ports") or {}).get(CONTAINER_PORT) or []
    if bindings and bindings[0].get("HostPort"):
        port = bindings[0]["HostPort"]

    volumes = list(host_config.get("Binds") or [])
    for mount in host_config.get("Mounts") or []:
        if mount.get("Type") == "volume":
            volumes.append(f"{mount.get('Name')}:{mount.get('Destination')}")

    return ContainerConfig(
        port=port,
        volumes=volumes,
        env_vars=list((data.get("Config") or {}).get("Env") or []),
        name=(data.get("Name") or "").lstrip("/") or DEFAULT_CONTAINER_NAME,
    )


async def get_container_config(name: str = DEFAULT_CONTAINER_NAME) -> ContainerConfig:
    """Current container settings; defaults when docker cannot tell us."""
    raw = await _inspect_container(name)
    if raw is None:
        return ContainerConfig()

    try:
        return parse_container_config(raw)
    except (ValueError, AttributeError, TypeError) as e:
        logger.warning("Unreadable docker inspect output: %s", e)
        return ContainerConfig()


async def get_deployment_info(app_dir: Path, environment: str = "production") -> Dict[str, Any]:
    """Deployment method, plus the container config for plain Docker."""
    method = detect_deployment_method(app_dir, environment)
    info: Dict[str, Any] = {"method": method.value}
    if method == DeploymentMethod.DOCKER:
        info["config"] = (await get_container_config()).to_dict()
    return info
