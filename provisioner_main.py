#!/usr/bin/env python3
"""
Claw4Growth provisioner: runs on the container host.

Polls the database for instances in status=provisioning and turns each one
into a running agent container, one at a time. Also reconciles stored
status against the container engine and pushes content updates.

Usage:
    python provisioner_main.py                       # run the poll worker
    python provisioner_main.py reconcile             # one reconcile pass
    python provisioner_main.py update-content        # refresh docs in running containers
    python provisioner_main.py update-content --no-identity --reindex
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from c4g.config import get_settings
from c4g.db import create_engine_and_sessionmaker, init_db
from c4g.exceptions import EngineUnavailableError
from c4g.logging_config import setup_logging
from c4g.runtime import DockerRuntime
from c4g.services.billing_service import BillingService
from c4g.services.content_updater import ContentUpdater
from c4g.services.instance_store import InstanceStore
from c4g.services.orchestrator import ProvisioningOrchestrator
from c4g.services.provisioner import ProvisionerWorker
from c4g.utils import CredentialCipher

logger = logging.getLogger("c4g.provisioner")


async def _run(args) -> int:
    settings = get_settings()
    engine, session_factory = create_engine_and_sessionmaker(settings.database_url)
    await init_db(engine)

    runtime = None
    try:
        runtime = DockerRuntime.from_settings(settings)
        await runtime.ping()
    except EngineUnavailableError as e:
        logger.error(f"Cannot start: {e}")
        if runtime is not None:
            runtime.close()
        await engine.dispose()
        return 1

    cipher = CredentialCipher(settings.encryption_key, fallback_secret=settings.jwt_secret)
    store = InstanceStore(session_factory, cipher)
    billing = BillingService(session_factory, settings)
    orchestrator = ProvisioningOrchestrator(store, runtime, settings, tier_lookup=billing.tier_for_user)

    try:
        if args.command == "reconcile":
            counts = await orchestrator.reconcile_all()
            print(json.dumps(counts, indent=2))
        elif args.command == "update-content":
            updater = ContentUpdater(store, runtime, settings)
            report = await updater.push_all(
                docs=not args.no_docs, identity=not args.no_identity, reindex=args.reindex
            )
            print(json.dumps(report.to_dict(), indent=2))
        else:
            await _serve(store, orchestrator, settings)
    finally:
        runtime.close()
        await engine.dispose()
    return 0


async def _serve(store, orchestrator, settings) -> None:
    worker = ProvisionerWorker(
        store,
        orchestrator,
        poll_seconds=settings.provisioner_poll_seconds,
        reconcile_seconds=settings.reconcile_interval_seconds,
    )
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    worker.start()
    # first tick right away instead of waiting a full interval
    await worker.tick()
    await stop.wait()
    worker.stop()


def main() -> int:
    parser = argparse.ArgumentParser(description="Claw4Growth provisioner")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the provisioning poll worker (default)")
    sub.add_parser("reconcile", help="Reconcile every settled instance once")
    update = sub.add_parser("update-content", help="Push tools/identity docs to running containers")
    update.add_argument("--no-docs", action="store_true", help="Skip TOOLS.md / MODELS.md")
    update.add_argument("--no-identity", action="store_true", help="Skip IDENTITY.md / USER.md")
    update.add_argument("--reindex", action="store_true", help="Rebuild the agent memory index")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
