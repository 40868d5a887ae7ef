"""
Hot content updates for running instances.

Rewrites the tools/models docs and the identity/user docs inside running
containers without re-creating them. ``memory/brand.md`` is never part of
an update: after provisioning it belongs to the agent.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from c4g.db.models import Instance, InstanceStatus
from c4g.exceptions import ContainerNotFoundError, PlatformError
from c4g.memory.generator import OnboardingData, render_hot_update_set
from c4g.runtime.docker_runtime import DockerRuntime, RuntimeStatus
from c4g.runtime.labels import CONFIG_MOUNT
from c4g.services.instance_store import InstanceStore

logger = logging.getLogger(__name__)

REINDEX_COMMAND = ["node", "openclaw.mjs", "memory", "index", "--force"]


@dataclass
class UpdateReport:
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    details: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "details": self.details,
        }


class ContentUpdater:
    def __init__(self, store: InstanceStore, runtime: DockerRuntime, settings):
        self.store = store
        self.runtime = runtime
        self.settings = settings

    async def push(
        self,
        instance: Instance,
        docs: bool = True,
        identity: bool = True,
        reindex: bool = False,
    ) -> List[str]:
        """Write the requested files into one running container. Returns what was written."""
        if not instance.container_id:
            raise ContainerNotFoundError("Instance has no container")
        if await self.runtime.inspect_status(instance.container_id) == RuntimeStatus.STOPPED:
            return []

        config = await self.store.get_config(instance.id)
        onboarding = OnboardingData.from_dict(config.onboarding_data if config else None)
        if identity and onboarding is None:
            logger.warning("[UPDATE] %s has no onboarding data, skipping identity files", instance.id)

        files = render_hot_update_set(onboarding, docs=docs, identity=identity)
        written = sorted(files)
        if files:
            await self.runtime.write_files_in_container(
                instance.container_id,
                CONFIG_MOUNT,
                files,
                timeout=self.settings.file_write_timeout,
                user=self.settings.agent_user,
            )

        if reindex:
            try:
                await self.runtime.exec_one_shot(
                    instance.container_id,
                    REINDEX_COMMAND,
                    timeout=self.settings.file_write_timeout,
                    user=self.settings.agent_user,
                )
                written.append("(reindexed)")
            except PlatformError as exc:
                logger.warning("[UPDATE] Memory reindex failed for %s: %s", instance.id, exc)

        return written

    async def push_all(self, docs: bool = True, identity: bool = True, reindex: bool = False) -> UpdateReport:
        report = UpdateReport()
        for instance in await self.store.list_by_status(InstanceStatus.RUNNING.value):
            try:
                written = await self.push(instance, docs=docs, identity=identity, reindex=reindex)
            except ContainerNotFoundError:
                logger.warning("[UPDATE] %s: container not found, skipping", instance.id)
                report.skipped += 1
                continue
            except PlatformError as exc:
                logger.error("[UPDATE] %s: %s", instance.id, exc)
                report.failed += 1
                continue

            if written:
                report.updated += 1
                report.details[instance.id] = written
            else:
                report.skipped += 1

        logger.info(
            "[UPDATE] Done: %d updated, %d skipped, %d failed",
            report.updated, report.skipped, report.failed,
        )
        return report
