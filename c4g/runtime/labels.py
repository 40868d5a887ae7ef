"""
Container resource descriptors and reverse-proxy labels.

Everything here is derived data: names are deterministic functions of the
user id, limits come from the subscription tier, and the labels attached at
create time are what the Caddy docker-proxy reads to route
``{subdomain}.{platform_domain}`` to the agent gateway port.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from c4g.db.models import Tier

MANAGED_BY = "claw4growth"
CONTAINER_PREFIX = "openclaw-"
ISOLATED_NETWORK_PREFIX = "c4g-isolated-"

# Label keys
LABEL_APP = "c4g.app"
LABEL_INSTANCE_ID = "c4g.instance-id"
LABEL_USER_ID = "c4g.user-id"
LABEL_SUBDOMAIN = "c4g.subdomain"
LABEL_MANAGED_BY = "managed-by"

CONFIG_MOUNT = "/home/node/.openclaw"
WORKSPACE_MOUNT = "/home/node/.openclaw/workspace"

_MIB = 1024 * 1024


@dataclass(frozen=True)
class ResourceLimits:
    """Resource ceilings for one agent container."""
    memory_bytes: int
    nano_cpus: int
    pids_limit: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory_mb": self.memory_bytes // _MIB,
            "cpus": self.nano_cpus / 1e9,
            "pids_limit": self.pids_limit,
        }


TIER_LIMITS: Dict[str, ResourceLimits] = {
    Tier.FREE.value: ResourceLimits(256 * _MIB, 500_000_000, 100),
    Tier.PRO.value: ResourceLimits(512 * _MIB, 1_000_000_000, 200),
    Tier.ENTERPRISE.value: ResourceLimits(1024 * _MIB, 2_000_000_000, 500),
}


def limits_for_tier(tier: Optional[str]) -> ResourceLimits:
    """Unknown or missing tiers get pro limits."""
    return TIER_LIMITS.get(tier or "", TIER_LIMITS[Tier.PRO.value])


@dataclass(frozen=True)
class ResourceNames:
    container: str
    config_volume: str
    workspace_volume: str
    isolated_network: str

    @property
    def volumes(self) -> List[str]:
        return [self.config_volume, self.workspace_volume]


def resource_names(user_id: str) -> ResourceNames:
    container = f"{CONTAINER_PREFIX}{user_id}"
    return ResourceNames(
        container=container,
        config_volume=f"{container}-config",
        workspace_volume=f"{container}-workspace",
        isolated_network=f"{ISOLATED_NETWORK_PREFIX}{container}",
    )


def instance_url(subdomain: str, platform_domain: str) -> str:
    return f"https://{subdomain}.{platform_domain}"


def proxy_labels(subdomain: str, platform_domain: str, upstream_port: int) -> Dict[str, str]:
    """Labels the edge proxy uses to route the subdomain to the container."""
    return {
        "caddy": f"{subdomain}.{platform_domain}",
        "caddy.reverse_proxy": f"{{{{upstreams {upstream_port}}}}}",
        LABEL_MANAGED_BY: MANAGED_BY,
        LABEL_SUBDOMAIN: subdomain,
    }


def instance_labels(
    instance_id: str,
    user_id: str,
    subdomain: str,
    platform_domain: str,
    upstream_port: int,
) -> Dict[str, str]:
    labels = {
        LABEL_APP: MANAGED_BY,
        LABEL_INSTANCE_ID: instance_id,
        LABEL_USER_ID: user_id,
    }
    labels.update(proxy_labels(subdomain, platform_domain, upstream_port))
    return labels


@dataclass
class HealthCheck:
    test: List[str] = field(default_factory=lambda: ["CMD", "node", "dist/index.js", "health"])
    interval_s: int = 30
    timeout_s: int = 10
    retries: int = 3
    start_period_s: int = 60

    def to_docker(self) -> Dict[str, Any]:
        ns = 1_000_000_000
        return {
            "test": self.test,
            "interval": self.interval_s * ns,
            "timeout": self.timeout_s * ns,
            "retries": self.retries,
            "start_period": self.start_period_s * ns,
        }


@dataclass
class ContainerSpec:
    """Everything the runtime adapter needs to create one agent container."""
    name: str
    image: str
    user: str
    environment: Dict[str, str]
    labels: Dict[str, str]
    limits: ResourceLimits
    volumes: Dict[str, str]  # volume name → mount path
    network_mode: str
    healthcheck: HealthCheck = field(default_factory=HealthCheck)
    read_only: bool = True
    cap_drop: List[str] = field(default_factory=lambda: ["ALL"])
    security_opt: List[str] = field(default_factory=lambda: ["no-new-privileges:true"])
    tmpfs: Dict[str, str] = field(default_factory=lambda: {
        "/tmp": "rw,noexec,nosuid,size=100m",
        "/var/tmp": "rw,noexec,nosuid,size=100m",
        "/run": "rw,noexec,nosuid,size=50m",
    })
