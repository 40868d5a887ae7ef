"""
Provisioning orchestrator.

Turns an Instance in status=provisioning into a running, isolated agent
container (or status=error with a message), tears instances down, and
reconciles the stored status with what the container engine reports.

Recovery is remove-then-create: a container left behind by an interrupted
attempt is removed before the pipeline starts again, and every resource
creator is idempotent by name, so re-running the whole pipeline is safe.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from c4g.db.models import Instance, InstanceStatus
from c4g.exceptions import (
    ContainerNotFoundError,
    EngineError,
    ImagePullTimeoutError,
    NotFoundError,
    OperationTimeoutError,
    PlatformError,
)
from c4g.logging_config import instance_id_var
from c4g.memory.generator import (
    BRAND_MEMORY_FILE,
    CONFIG_FILE,
    OnboardingData,
    generate_agent_config,
    render_document_set,
)
from c4g.runtime.docker_runtime import DockerRuntime, RuntimeStatus
from c4g.runtime.labels import (
    CONFIG_MOUNT,
    WORKSPACE_MOUNT,
    ContainerSpec,
    instance_labels,
    limits_for_tier,
    resource_names,
)
from c4g.services.instance_store import DecryptedConfig, InstanceStore
from c4g.services.model_catalog import get_model

logger = logging.getLogger(__name__)

TierLookup = Callable[[str], Awaitable[Optional[str]]]

CONTAINER_NOT_FOUND = "Container not found"
CONTAINER_UNHEALTHY = "Container is unhealthy"


@dataclass
class _AttemptResources:
    """Resources created by the current attempt, cleaned up if it fails."""
    container_id: Optional[str] = None
    volumes: List[str] = field(default_factory=list)
    network: Optional[str] = None


def describe_failure(exc: Exception) -> str:
    """Readable error_message for a failed provisioning attempt."""
    if isinstance(exc, ImagePullTimeoutError):
        return f"Timed out pulling the agent image: {exc}"
    if isinstance(exc, OperationTimeoutError):
        return f"Timed out: {exc}"
    if isinstance(exc, EngineError):
        return f"Container engine error: {exc}"
    if isinstance(exc, PlatformError):
        return str(exc) or exc.code
    return f"Unexpected error: {exc}"


class ProvisioningOrchestrator:
    def __init__(
        self,
        store: InstanceStore,
        runtime: DockerRuntime,
        settings,
        tier_lookup: Optional[TierLookup] = None,
    ):
        self.store = store
        self.runtime = runtime
        self.settings = settings
        self._tier_lookup = tier_lookup
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, instance_id: str) -> asyncio.Lock:
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = self._locks[instance_id] = asyncio.Lock()
        return lock

    async def _tier_for(self, user_id: str) -> str:
        tier = await self._tier_lookup(user_id) if self._tier_lookup else None
        return tier or self.settings.default_tier

    # ── Provision ───────────────────────────────────────────────────

    async def provision(self, instance_id: str) -> Optional[str]:
        """Drive one instance out of provisioning. Returns its final status.

        Infrastructure failures never propagate: they end in status=error.
        """
        async with self._lock_for(instance_id):
            token = instance_id_var.set(instance_id)
            try:
                return await self._provision_locked(instance_id)
            finally:
                instance_id_var.reset(token)

    async def _provision_locked(self, instance_id: str) -> Optional[str]:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            logger.warning("[PROVISION] Instance %s not found", instance_id)
            return None
        if instance.status != InstanceStatus.PROVISIONING.value:
            logger.info("[PROVISION] Instance %s is %s, nothing to do", instance_id, instance.status)
            return instance.status

        created = _AttemptResources()
        try:
            config = await self.store.get_config(instance_id)
            container_id = await self._run_pipeline(instance, config, created)
        except Exception as exc:
            logger.exception("[PROVISION] Provisioning failed for %s", instance_id)
            await self.store.mark_provisioning_failed(instance_id, describe_failure(exc))
            await self._cleanup(created)
            return InstanceStatus.ERROR.value

        if not await self.store.mark_running(instance_id, container_id):
            # torn down or failed elsewhere while we were working
            current = await self.store.get_instance(instance_id)
            logger.warning(
                "[PROVISION] Instance %s left provisioning during the attempt (now %s)",
                instance_id, current.status if current else "deleted",
            )
            # nothing records this attempt's resources any more; release them
            if current is None or current.container_id != container_id:
                await self._cleanup(created)
            return current.status if current else None

        logger.info("[PROVISION] Instance %s running (container %s)", instance_id, container_id[:12])
        return InstanceStatus.RUNNING.value

    async def _run_pipeline(
        self,
        instance: Instance,
        config: Optional[DecryptedConfig],
        created: _AttemptResources,
    ) -> str:
        s = self.settings
        names = resource_names(instance.user_id)

        # 0. remove-then-create
        leftover = await self.runtime.find_container(names.container)
        if leftover:
            logger.info("[PROVISION] Removing leftover container %s", names.container)
            await self.runtime.remove(leftover, remove_volumes=False)

        # 1. images
        await self.runtime.ensure_image(s.agent_image, timeout=s.image_pull_timeout)
        await self.runtime.ensure_image(self.runtime.helper_image, timeout=s.image_pull_timeout)

        # 2. volumes + isolated network
        for volume in names.volumes:
            if await self.runtime.create_volume(volume):
                created.volumes.append(volume)
        if await self.runtime.create_isolated_network(names.isolated_network):
            created.network = names.isolated_network

        # 3. agent config document
        model = get_model(config.model_preference if config else None)
        onboarding = OnboardingData.from_dict(config.onboarding_data if config else None)
        await self.runtime.write_volume_files(
            names.config_volume,
            {CONFIG_FILE: generate_agent_config(model.route, s.agent_port, onboarding is not None)},
            timeout=s.file_write_timeout,
        )

        # 4. memory / identity documents; brand memory is never clobbered
        if onboarding is not None:
            await self.runtime.write_volume_files(
                names.config_volume,
                render_document_set(onboarding),
                timeout=s.file_write_timeout,
                keep_existing=(BRAND_MEMORY_FILE,),
            )

        # 5. container
        tier = await self._tier_for(instance.user_id)
        spec = self.build_container_spec(instance, config, model.route, tier)
        container_id = await self.runtime.create_container(spec)
        created.container_id = container_id

        # 6. join the isolated network, then start
        await self.runtime.connect_network(names.isolated_network, container_id)
        await self.runtime.start(container_id)
        return container_id

    def build_container_spec(
        self,
        instance: Instance,
        config: Optional[DecryptedConfig],
        model_route: str,
        tier: str,
    ) -> ContainerSpec:
        s = self.settings
        names = resource_names(instance.user_id)

        environment = {
            "HOST": "0.0.0.0",
            "PORT": str(s.agent_port),
            "USER_ID": instance.user_id,
            "INSTANCE_ID": instance.id,
            "MODEL": model_route,
        }
        optional = {
            "MINIMAX_API_KEY": s.minimax_api_key,
            "COMPOSIO_API_KEY": s.composio_api_key,
        }
        if config is not None:
            optional.update({
                "ANTHROPIC_API_KEY": config.secrets.anthropic_api_key,
                "OPENAI_API_KEY": config.secrets.openai_api_key,
                "TELEGRAM_BOT_TOKEN": config.secrets.telegram_bot_token,
            })
        environment.update({k: v for k, v in optional.items() if v})

        return ContainerSpec(
            name=names.container,
            image=s.agent_image,
            user=s.agent_user,
            environment=environment,
            labels=instance_labels(
                instance.id, instance.user_id, instance.subdomain, s.platform_domain, s.agent_port
            ),
            limits=limits_for_tier(tier),
            volumes={names.config_volume: CONFIG_MOUNT, names.workspace_volume: WORKSPACE_MOUNT},
            network_mode=s.ingress_network,
        )

    async def _cleanup(self, created: _AttemptResources) -> None:
        """Best effort: failures here are logged, never raised."""
        steps = []
        if created.container_id:
            steps.append((f"container {created.container_id[:12]}",
                          self.runtime.remove(created.container_id, remove_volumes=False)))
        for volume in created.volumes:
            steps.append((f"volume {volume}", self.runtime.remove_volume(volume)))
        if created.network:
            steps.append((f"network {created.network}", self.runtime.remove_network(created.network)))

        for what, step in steps:
            try:
                await step
            except PlatformError as exc:
                logger.warning("[PROVISION] Cleanup of %s failed: %s", what, exc)

    # ── Teardown ────────────────────────────────────────────────────

    async def teardown(self, instance_id: str) -> None:
        """Release container, volumes and network, then delete the rows.

        Already-missing resources count as released. Any other engine error
        propagates before the rows are touched.
        """
        grace = self.settings.stop_grace_seconds

        async with self._lock_for(instance_id):
            instance = await self.store.get_instance(instance_id)
            if instance is None:
                raise NotFoundError(f"Instance {instance_id} not found")
            names = resource_names(instance.user_id)

            container_id = instance.container_id or await self.runtime.find_container(names.container)
            if container_id:
                try:
                    await self.runtime.stop(container_id, grace_seconds=grace)
                    await self.runtime.remove(container_id, remove_volumes=True)
                except ContainerNotFoundError:
                    logger.info("[TEARDOWN] Container for %s already gone", instance_id)

            for volume in names.volumes:
                try:
                    await self.runtime.remove_volume(volume)
                except ContainerNotFoundError:
                    pass
            try:
                await self.runtime.remove_network(names.isolated_network)
            except ContainerNotFoundError:
                pass

            await self.store.delete_instance(instance_id)
        self._locks.pop(instance_id, None)
        logger.info("[TEARDOWN] Instance %s (%s) removed", instance_id, instance.subdomain)

    # ── Reconcile ───────────────────────────────────────────────────

    async def reconcile(self, instance_id: str) -> Optional[str]:
        """Make the stored status match the container engine. Returns the new status.

        EngineUnavailableError propagates and leaves the record untouched.
        """
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance {instance_id} not found")
        if instance.status == InstanceStatus.PROVISIONING.value:
            return instance.status

        if not instance.container_id:
            if instance.status == InstanceStatus.ERROR.value:
                return instance.status
            await self.store.set_status(instance_id, InstanceStatus.ERROR.value, CONTAINER_NOT_FOUND)
            return InstanceStatus.ERROR.value

        try:
            observed = await self.runtime.inspect_status(instance.container_id)
        except ContainerNotFoundError:
            logger.warning("[RECONCILE] Container for %s disappeared", instance_id)
            await self.store.set_status(
                instance_id, InstanceStatus.ERROR.value, CONTAINER_NOT_FOUND, clear_container=True
            )
            return InstanceStatus.ERROR.value

        mapped = {
            RuntimeStatus.RUNNING: InstanceStatus.RUNNING.value,
            RuntimeStatus.STOPPED: InstanceStatus.STOPPED.value,
            RuntimeStatus.ERROR: InstanceStatus.ERROR.value,
        }[observed]
        message = CONTAINER_UNHEALTHY if observed == RuntimeStatus.ERROR else None

        if mapped != instance.status or message != instance.error_message:
            logger.info("[RECONCILE] Instance %s: %s → %s", instance_id, instance.status, mapped)
            await self.store.set_status(instance_id, mapped, message)
        return mapped

    async def reconcile_all(self) -> Dict[str, int]:
        """Reconcile every settled instance. Returns counts per resulting status."""
        settled: List[Instance] = []
        for status in (InstanceStatus.RUNNING, InstanceStatus.STOPPED, InstanceStatus.ERROR):
            settled.extend(await self.store.list_by_status(status.value))

        counts: Dict[str, int] = {}
        for instance in settled:
            try:
                result = await self.reconcile(instance.id)
            except NotFoundError:
                continue
            counts[result] = counts.get(result, 0) + 1
        return counts

    # ── Lifecycle actions ───────────────────────────────────────────

    async def _require_container(self, instance_id: str) -> Instance:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance {instance_id} not found")
        if not instance.container_id:
            raise NotFoundError("Instance has no container yet")
        return instance

    async def _drive(self, instance_id: str, action, target_status: str) -> str:
        instance = await self._require_container(instance_id)
        try:
            await action(instance.container_id)
        except ContainerNotFoundError:
            await self.store.set_status(
                instance_id, InstanceStatus.ERROR.value, CONTAINER_NOT_FOUND, clear_container=True
            )
            raise
        await self.store.set_status(instance_id, target_status)
        return target_status

    async def start(self, instance_id: str) -> str:
        return await self._drive(instance_id, self.runtime.start, InstanceStatus.RUNNING.value)

    async def stop(self, instance_id: str) -> str:
        grace = self.settings.stop_grace_seconds

        async def _stop(container_id: str) -> None:
            await self.runtime.stop(container_id, grace_seconds=grace)

        return await self._drive(instance_id, _stop, InstanceStatus.STOPPED.value)

    async def restart(self, instance_id: str) -> str:
        grace = self.settings.stop_grace_seconds

        async def _restart(container_id: str) -> None:
            await self.runtime.restart(container_id, grace_seconds=grace)

        return await self._drive(instance_id, _restart, InstanceStatus.RUNNING.value)

    async def recreate(self, instance_id: str) -> str:
        """Drop the container (volumes kept) and queue the instance for provisioning.

        Used after credentials or the model change; limits are re-derived
        from the current tier when the worker re-creates it.
        """
        async with self._lock_for(instance_id):
            instance = await self.store.get_instance(instance_id)
            if instance is None:
                raise NotFoundError(f"Instance {instance_id} not found")
            container_id = instance.container_id or await self.runtime.find_container(
                resource_names(instance.user_id).container
            )
            if container_id:
                try:
                    await self.runtime.remove(container_id, remove_volumes=False)
                except ContainerNotFoundError:
                    pass
            await self.store.requeue(instance_id)
        logger.info("[PROVISION] Instance %s queued for re-creation", instance_id)
        return InstanceStatus.PROVISIONING.value
