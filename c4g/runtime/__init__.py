from c4g.runtime.docker_runtime import DockerRuntime, RuntimeStatus
from c4g.runtime.labels import (
    ContainerSpec, ResourceLimits, ResourceNames,
    instance_labels, instance_url, limits_for_tier, proxy_labels, resource_names,
)

__all__ = [
    "DockerRuntime",
    "RuntimeStatus",
    "ContainerSpec",
    "ResourceLimits",
    "ResourceNames",
    "instance_labels",
    "instance_url",
    "limits_for_tier",
    "proxy_labels",
    "resource_names",
]
