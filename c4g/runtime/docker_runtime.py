"""
Container Runtime Adapter: narrow async boundary over the Docker SDK.

The docker SDK is blocking, so every call runs in ``asyncio.to_thread``.
SDK exceptions never leave this module: they are translated into the
c4g.exceptions runtime taxonomy.

    NotFound          → ContainerNotFoundError
    APIError 409      → ResourceConflictError
    connection errors → EngineUnavailableError
    anything else     → EngineError

Usage:
    runtime = DockerRuntime.from_settings(settings)
    await runtime.ensure_image("ghcr.io/openclaw/openclaw:latest", timeout=300)
    container_id = await runtime.create_container(spec)
    await runtime.start(container_id)
    status = await runtime.inspect_status(container_id)
    runtime.close()
"""

import asyncio
import base64
import logging
import posixpath
import shlex
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

import docker
from docker.errors import APIError, ContainerError, DockerException, NotFound

from c4g.exceptions import (
    ContainerNotFoundError,
    EngineError,
    EngineUnavailableError,
    ImagePullTimeoutError,
    OperationTimeoutError,
    ResourceConflictError,
)
from c4g.runtime.labels import LABEL_MANAGED_BY, MANAGED_BY, ContainerSpec

logger = logging.getLogger(__name__)

HELPER_MOUNT = "/data"


class RuntimeStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


def _translate(exc: Exception, what: str) -> Exception:
    if isinstance(exc, NotFound):
        return ContainerNotFoundError(f"{what}: not found")
    if isinstance(exc, APIError):
        if exc.status_code == 409:
            return ResourceConflictError(f"{what}: already exists")
        return EngineError(f"{what}: {exc.explanation or exc}")
    if isinstance(exc, ContainerError):
        return EngineError(f"{what}: exited {exc.exit_status}: {exc.stderr!r}")
    if isinstance(exc, DockerException):
        return EngineUnavailableError(f"{what}: {exc}")
    # requests.ConnectionError and socket errors are OSError subclasses
    return EngineUnavailableError(f"{what}: cannot reach container engine ({exc})")


def _is_safe_relpath(path: str) -> bool:
    norm = posixpath.normpath(path)
    return (
        not norm.startswith(("/", ".."))
        and "'" not in path
        and norm not in ("", ".")
    )


def build_write_script(
    base_dir: str,
    files: Dict[str, str],
    owner: Optional[str] = None,
    keep_existing: Iterable[str] = (),
) -> str:
    """Shell script that writes ``files`` (relative path → text) under ``base_dir``.

    Content travels base64-encoded so quoting never depends on the text.
    Paths listed in ``keep_existing`` are only written when absent.
    """
    keep = set(keep_existing)
    lines = ["set -e"]
    for rel_path, content in files.items():
        if not _is_safe_relpath(rel_path):
            raise ValueError(f"Refusing to write outside the target directory: {rel_path!r}")
        target = posixpath.join(base_dir, posixpath.normpath(rel_path))
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        lines.append(f"mkdir -p {shlex.quote(posixpath.dirname(target))}")
        write = f"echo '{encoded}' | base64 -d > {shlex.quote(target)}"
        if rel_path in keep:
            write = f"[ -e {shlex.quote(target)} ] || {{ {write}; }}"
        lines.append(write)
    if owner:
        lines.append(f"chown -R {shlex.quote(owner)} {shlex.quote(base_dir)}")
    return "\n".join(lines)


class DockerRuntime:
    """Async wrapper around a ``docker.DockerClient``."""

    def __init__(self, client: docker.DockerClient, helper_image: str = "busybox:latest"):
        self._client = client
        self.helper_image = helper_image

    @classmethod
    def from_settings(cls, settings) -> "DockerRuntime":
        try:
            if settings.docker_host:
                client = docker.DockerClient(base_url=settings.docker_host)
            else:
                client = docker.from_env()
        except DockerException as exc:
            raise EngineUnavailableError(f"Cannot connect to container engine: {exc}") from exc
        return cls(client, helper_image=settings.helper_image)

    def close(self) -> None:
        self._client.close()

    async def _call(self, what: str, fn: Callable, *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (DockerException, OSError) as exc:
            raise _translate(exc, what) from exc

    async def ping(self) -> bool:
        return await self._call("ping", self._client.ping)

    # ── Images ──────────────────────────────────────────────────────

    async def ensure_image(self, ref: str, timeout: float) -> None:
        """Make sure ``ref`` is present locally, pulling it within ``timeout`` seconds."""
        try:
            await self._call(f"image {ref}", self._client.images.get, ref)
            return
        except ContainerNotFoundError:
            pass

        logger.info("[RUNTIME] Pulling image %s (timeout %ss)", ref, timeout)
        try:
            await asyncio.wait_for(
                self._call(f"pull {ref}", self._client.images.pull, ref),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ImagePullTimeoutError(f"Pulling {ref} exceeded {timeout}s") from exc
        logger.info("[RUNTIME] Image %s ready", ref)

    # ── Volumes & networks ──────────────────────────────────────────

    async def create_volume(self, name: str) -> bool:
        """Create a named volume. Returns False when it already existed."""
        try:
            await self._call(f"volume {name}", self._client.volumes.get, name)
            return False
        except ContainerNotFoundError:
            pass
        try:
            await self._call(
                f"create volume {name}",
                self._client.volumes.create,
                name=name,
                labels={LABEL_MANAGED_BY: MANAGED_BY},
            )
        except ResourceConflictError:
            return False
        return True

    async def remove_volume(self, name: str) -> None:
        volume = await self._call(f"volume {name}", self._client.volumes.get, name)
        await self._call(f"remove volume {name}", volume.remove, force=True)

    async def create_isolated_network(self, name: str) -> bool:
        """Create an internal bridge network (no outbound route). False if it existed."""
        try:
            await self._call(f"network {name}", self._client.networks.get, name)
            return False
        except ContainerNotFoundError:
            pass
        try:
            await self._call(
                f"create network {name}",
                self._client.networks.create,
                name,
                driver="bridge",
                internal=True,
                labels={LABEL_MANAGED_BY: MANAGED_BY},
            )
        except ResourceConflictError:
            return False
        return True

    async def remove_network(self, name: str) -> None:
        network = await self._call(f"network {name}", self._client.networks.get, name)
        await self._call(f"remove network {name}", network.remove)

    async def connect_network(self, network_name: str, container_id: str) -> None:
        network = await self._call(f"network {network_name}", self._client.networks.get, network_name)
        try:
            await self._call(f"connect {network_name}", network.connect, container_id)
        except EngineError as exc:
            # the daemon answers 403 "endpoint ... already exists" on re-attach
            if not isinstance(exc, ResourceConflictError) and "already exists" not in str(exc):
                raise

    # ── Containers ──────────────────────────────────────────────────

    async def find_container(self, name: str) -> Optional[str]:
        try:
            container = await self._call(f"container {name}", self._client.containers.get, name)
        except ContainerNotFoundError:
            return None
        return container.id

    async def create_container(self, spec: ContainerSpec) -> str:
        """Create (not start) the container. An existing one with the same name is adopted."""
        kwargs = dict(
            name=spec.name,
            user=spec.user,
            environment=spec.environment,
            labels=spec.labels,
            healthcheck=spec.healthcheck.to_docker(),
            mem_limit=spec.limits.memory_bytes,
            nano_cpus=spec.limits.nano_cpus,
            pids_limit=spec.limits.pids_limit,
            cap_drop=spec.cap_drop,
            security_opt=spec.security_opt,
            read_only=spec.read_only,
            tmpfs=spec.tmpfs,
            volumes={vol: {"bind": path, "mode": "rw"} for vol, path in spec.volumes.items()},
            network_mode=spec.network_mode,
        )
        try:
            container = await self._call(
                f"create container {spec.name}",
                self._client.containers.create,
                spec.image,
                **kwargs,
            )
        except ResourceConflictError:
            existing = await self.find_container(spec.name)
            if existing is None:
                raise
            logger.info("[RUNTIME] Container %s already exists, adopting", spec.name)
            return existing
        return container.id

    async def _get(self, container_id: str):
        return await self._call(
            f"container {container_id[:12]}", self._client.containers.get, container_id
        )

    async def start(self, container_id: str) -> None:
        container = await self._get(container_id)
        await self._call(f"start {container_id[:12]}", container.start)

    async def stop(self, container_id: str, grace_seconds: int = 10) -> None:
        container = await self._get(container_id)
        await self._call(f"stop {container_id[:12]}", container.stop, timeout=grace_seconds)

    async def restart(self, container_id: str, grace_seconds: int = 10) -> None:
        container = await self._get(container_id)
        await self._call(f"restart {container_id[:12]}", container.restart, timeout=grace_seconds)

    async def remove(self, container_id: str, remove_volumes: bool = False) -> List[str]:
        """Force-remove a container. With ``remove_volumes`` its named volumes go too.

        Returns the names of the volumes that were removed.
        """
        container = await self._get(container_id)
        named_volumes = [
            m["Name"]
            for m in container.attrs.get("Mounts", [])
            if m.get("Type") == "volume" and m.get("Name")
        ]
        await self._call(
            f"remove {container_id[:12]}", container.remove, v=remove_volumes, force=True
        )
        removed: List[str] = []
        if remove_volumes:
            for name in named_volumes:
                try:
                    await self.remove_volume(name)
                except ContainerNotFoundError:
                    continue
                removed.append(name)
        return removed

    async def inspect_status(self, container_id: str) -> RuntimeStatus:
        container = await self._get(container_id)
        state = container.attrs.get("State", {})
        if not state.get("Running"):
            return RuntimeStatus.STOPPED
        health = (state.get("Health") or {}).get("Status")
        if health == "unhealthy":
            return RuntimeStatus.ERROR
        return RuntimeStatus.RUNNING

    async def exec_one_shot(
        self,
        container_id: str,
        command: List[str],
        timeout: float,
        user: Optional[str] = None,
    ) -> str:
        """Run one command inside a running container and return its output."""
        container = await self._get(container_id)
        try:
            result = await asyncio.wait_for(
                self._call(
                    f"exec {container_id[:12]}",
                    container.exec_run,
                    command,
                    user=user or "",
                    demux=False,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise OperationTimeoutError(f"exec in {container_id[:12]} exceeded {timeout}s") from exc

        output = (result.output or b"").decode("utf-8", errors="replace")
        if result.exit_code != 0:
            raise EngineError(
                f"exec in {container_id[:12]} exited {result.exit_code}: {output[:300]}"
            )
        return output

    async def write_files_in_container(
        self,
        container_id: str,
        base_dir: str,
        files: Dict[str, str],
        timeout: float,
        user: Optional[str] = None,
    ) -> None:
        script = build_write_script(base_dir, files)
        await self.exec_one_shot(container_id, ["sh", "-c", script], timeout=timeout, user=user)

    async def write_volume_files(
        self,
        volume: str,
        files: Dict[str, str],
        timeout: float,
        owner: str = "1000:1000",
        keep_existing: Iterable[str] = (),
    ) -> None:
        """Write files into a named volume through a short-lived helper container."""
        script = build_write_script(HELPER_MOUNT, files, owner=owner, keep_existing=keep_existing)
        try:
            await asyncio.wait_for(
                self._call(
                    f"write files to {volume}",
                    self._client.containers.run,
                    self.helper_image,
                    ["sh", "-c", script],
                    volumes={volume: {"bind": HELPER_MOUNT, "mode": "rw"}},
                    network_disabled=True,
                    remove=True,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise OperationTimeoutError(f"Writing files to {volume} exceeded {timeout}s") from exc
