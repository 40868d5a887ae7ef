"""
Provisioner poll worker.

Every few seconds the worker claims the oldest instance in status
provisioning and runs it through the orchestrator to completion before
claiming the next. A separate, slower job reconciles settled instances
against the container engine.

Uses APScheduler in-process with ``max_instances=1`` so ticks never
overlap: provisioning is serial by construction.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from c4g.services.instance_store import InstanceStore
from c4g.services.orchestrator import ProvisioningOrchestrator

logger = logging.getLogger("c4g.provisioner")


class ProvisionerWorker:
    def __init__(
        self,
        store: InstanceStore,
        orchestrator: ProvisioningOrchestrator,
        poll_seconds: int = 5,
        reconcile_seconds: int = 60,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.poll_seconds = poll_seconds
        self.reconcile_seconds = reconcile_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._processing = False

    async def tick(self) -> Optional[str]:
        """Claim and process at most one pending instance. Returns its id, if any."""
        if self._processing:
            return None
        self._processing = True
        try:
            instance = await self.store.next_provisioning()
            if instance is None:
                return None
            logger.info("Provisioning %s (user %s, %s)", instance.id, instance.user_id, instance.subdomain)
            status = await self.orchestrator.provision(instance.id)
            logger.info("Instance %s finished provisioning: %s", instance.id, status)
            return instance.id
        except Exception as e:
            # the loop must survive a bad tick; the next one retries
            logger.error(f"Provisioner tick failed: {e}", exc_info=True)
            return None
        finally:
            self._processing = False

    async def reconcile_tick(self) -> None:
        try:
            counts = await self.orchestrator.reconcile_all()
        except Exception as e:
            logger.error(f"Reconcile pass failed: {e}", exc_info=True)
            return
        if counts:
            logger.info("Reconcile pass: %s", counts)

    def start(self) -> AsyncIOScheduler:
        """Schedule the poll (and reconcile) jobs on the running event loop."""
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.poll_seconds),
            id="provision_poll",
            name="Provision pending instances",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self.reconcile_seconds > 0:
            self.scheduler.add_job(
                self.reconcile_tick,
                trigger=IntervalTrigger(seconds=self.reconcile_seconds),
                id="reconcile",
                name="Reconcile instance status",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info(
            "Provisioner started (poll every %ss, reconcile every %ss)",
            self.poll_seconds, self.reconcile_seconds,
        )
        return self.scheduler

    def stop(self) -> None:
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Provisioner stopped")
        self.scheduler = None
