"""
Tests for provisioning, teardown, reconcile and lifecycle actions
"""

import asyncio
import json

import pytest

from c4g.db.models import InstanceStatus
from c4g.exceptions import (
    ConflictError,
    ContainerNotFoundError,
    EngineError,
    EngineUnavailableError,
    ImagePullTimeoutError,
    NotFoundError,
)
from c4g.memory.generator import BRAND_MEMORY_FILE, CONFIG_FILE, SYSTEM_PROMPT_FILE
from c4g.runtime.labels import resource_names
from c4g.services.orchestrator import CONTAINER_NOT_FOUND, ProvisioningOrchestrator


async def _provisioned(store, orchestrator, user_id, onboarding=None, subdomain="acme-x1y2"):
    instance = await store.create_instance(user_id, subdomain, onboarding_data=onboarding)
    await orchestrator.provision(instance.id)
    return await store.get_instance(instance.id)


# ============ Provision ============

@pytest.mark.asyncio
async def test_nova_acme_scenario(store, orchestrator, runtime, user_id, nova_onboarding):
    instance = await store.create_instance(user_id, "acme-k3m9", onboarding_data=nova_onboarding)
    assert instance.status == InstanceStatus.PROVISIONING.value

    status = await orchestrator.provision(instance.id)
    assert status == InstanceStatus.RUNNING.value

    stored = await store.get_instance(instance.id)
    assert stored.status == InstanceStatus.RUNNING.value
    assert stored.container_id is not None
    assert stored.error_message is None

    files = runtime.volumes[resource_names(user_id).config_volume]
    prompt = files[SYSTEM_PROMPT_FILE]
    assert "Nova" in prompt
    assert "Acme" in prompt
    assert BRAND_MEMORY_FILE in files


@pytest.mark.asyncio
async def test_provision_twice_creates_one_container(store, orchestrator, runtime, user_id):
    instance = await store.create_instance(user_id, "twice-0001")

    first, second = await asyncio.gather(
        orchestrator.provision(instance.id),
        orchestrator.provision(instance.id),
    )

    assert first == InstanceStatus.RUNNING.value
    assert second == InstanceStatus.RUNNING.value
    assert runtime.created == 1
    assert len(runtime.containers) == 1


@pytest.mark.asyncio
async def test_provision_skips_non_provisioning_instance(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    runtime.calls.clear()

    status = await orchestrator.provision(instance.id)

    assert status == InstanceStatus.RUNNING.value
    assert runtime.calls == []


@pytest.mark.asyncio
async def test_provision_missing_instance_returns_none(orchestrator):
    assert await orchestrator.provision("does-not-exist") is None


@pytest.mark.asyncio
async def test_container_spec_is_isolated_and_routed(store, orchestrator, runtime, user_id, settings):
    instance = await _provisioned(store, orchestrator, user_id, subdomain="route-abcd")
    spec = runtime.containers[instance.container_id]["spec"]
    names = resource_names(user_id)

    assert spec.name == names.container
    assert spec.network_mode == settings.ingress_network
    assert spec.labels["caddy"] == f"route-abcd.{settings.platform_domain}"
    assert spec.labels["caddy.reverse_proxy"] == "{{upstreams 18789}}"
    assert spec.environment["HOST"] == "0.0.0.0"
    assert spec.environment["PORT"] == "18789"
    assert spec.environment["MINIMAX_API_KEY"] == "mm-platform-key"
    assert "COMPOSIO_API_KEY" not in spec.environment
    assert spec.cap_drop == ["ALL"]
    assert spec.read_only is True
    # joined the per-instance network before start
    assert instance.container_id in runtime.networks[names.isolated_network]
    assert runtime.calls.index("connect_network") < runtime.calls.index("start")


@pytest.mark.asyncio
async def test_user_keys_reach_container_env(store, orchestrator, runtime, user_id):
    instance = await store.create_instance(
        user_id, "keys-0001", model_preference="claude",
        secrets={"anthropic_api_key": "sk-ant-123"},
    )
    await orchestrator.provision(instance.id)

    stored = await store.get_instance(instance.id)
    env = runtime.containers[stored.container_id]["spec"].environment
    assert env["ANTHROPIC_API_KEY"] == "sk-ant-123"
    assert env["MODEL"] == "anthropic/claude-opus-4-6"
    assert "OPENAI_API_KEY" not in env


@pytest.mark.asyncio
async def test_agent_config_document(store, orchestrator, runtime, user_id, nova_onboarding):
    await _provisioned(store, orchestrator, user_id, onboarding=nova_onboarding)
    doc = json.loads(runtime.volumes[resource_names(user_id).config_volume][CONFIG_FILE])

    assert doc["agent"]["model"] == "minimax/minimax-latest"
    assert doc["gateway"] == {"host": "0.0.0.0", "port": 18789}
    assert doc["memory"]["brandFile"].endswith("memory/brand.md")


@pytest.mark.asyncio
async def test_tier_lookup_sets_limits(store, runtime, settings, user_id):
    async def enterprise(_user_id):
        return "enterprise"

    orch = ProvisioningOrchestrator(store, runtime, settings, tier_lookup=enterprise)
    instance = await _provisioned(store, orch, user_id)
    limits = runtime.containers[instance.container_id]["spec"].limits

    assert limits.memory_bytes == 1024 * 1024 * 1024
    assert limits.nano_cpus == 2_000_000_000


@pytest.mark.asyncio
async def test_pull_timeout_ends_in_error(store, orchestrator, runtime, user_id):
    runtime.fail["ensure_image"] = ImagePullTimeoutError("Pulling agent image exceeded 300s")
    instance = await store.create_instance(user_id, "slow-pull1")

    status = await orchestrator.provision(instance.id)

    stored = await store.get_instance(instance.id)
    assert status == InstanceStatus.ERROR.value
    assert stored.status == InstanceStatus.ERROR.value
    assert stored.error_message.startswith("Timed out pulling")
    assert runtime.containers == {}


@pytest.mark.asyncio
async def test_failure_cleans_up_created_resources(store, orchestrator, runtime, user_id):
    runtime.fail["start"] = EngineError("start: port already allocated")
    instance = await store.create_instance(user_id, "fail-start")

    status = await orchestrator.provision(instance.id)

    stored = await store.get_instance(instance.id)
    assert status == InstanceStatus.ERROR.value
    assert "port already allocated" in stored.error_message
    assert stored.container_id is None
    assert runtime.containers == {}
    assert runtime.volumes == {}
    assert runtime.networks == {}


@pytest.mark.asyncio
async def test_retry_after_failure_is_clean(store, orchestrator, runtime, user_id):
    runtime.fail["connect_network"] = EngineError("network hiccup")
    instance = await store.create_instance(user_id, "retry-0001")
    await orchestrator.provision(instance.id)

    del runtime.fail["connect_network"]
    await store.requeue(instance.id)
    status = await orchestrator.provision(instance.id)

    assert status == InstanceStatus.RUNNING.value
    assert len(runtime.containers) == 1


@pytest.mark.asyncio
async def test_leftover_container_is_replaced(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    old_id = instance.container_id

    # simulate a crash after the container was created but before the status update
    await store.requeue(instance.id)
    await orchestrator.provision(instance.id)

    stored = await store.get_instance(instance.id)
    assert stored.status == InstanceStatus.RUNNING.value
    assert stored.container_id != old_id
    assert list(runtime.containers) == [stored.container_id]


@pytest.mark.asyncio
async def test_brand_memory_survives_reprovision(store, orchestrator, runtime, user_id, nova_onboarding):
    instance = await _provisioned(store, orchestrator, user_id, onboarding=nova_onboarding)
    volume = runtime.volumes[resource_names(user_id).config_volume]
    volume[BRAND_MEMORY_FILE] = "# Brand Context\n\nLearned: customers love dark mode.\n"

    await orchestrator.recreate(instance.id)
    await orchestrator.provision(instance.id)

    assert "dark mode" in runtime.volumes[resource_names(user_id).config_volume][BRAND_MEMORY_FILE]


# ============ Teardown ============

@pytest.mark.asyncio
async def test_teardown_then_new_request_gets_new_subdomain(store, orchestrator, runtime, user_id):
    first = await _provisioned(store, orchestrator, user_id, subdomain="first-aaaa")

    await orchestrator.teardown(first.id)

    assert await store.get_instance(first.id) is None
    assert runtime.containers == {}
    assert runtime.volumes == {}
    assert runtime.networks == {}

    second = await store.create_instance(user_id, "second-bbbb")
    status = await orchestrator.provision(second.id)

    assert status == InstanceStatus.RUNNING.value
    assert second.id != first.id
    assert second.subdomain != first.subdomain


@pytest.mark.asyncio
async def test_teardown_tolerates_missing_resources(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    runtime.containers.clear()
    runtime.volumes.clear()
    runtime.networks.clear()

    await orchestrator.teardown(instance.id)

    assert await store.get_instance(instance.id) is None


@pytest.mark.asyncio
async def test_teardown_keeps_rows_when_engine_unreachable(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    runtime.fail["stop"] = EngineUnavailableError("cannot reach container engine")

    with pytest.raises(EngineUnavailableError):
        await orchestrator.teardown(instance.id)

    assert await store.get_instance(instance.id) is not None


@pytest.mark.asyncio
async def test_teardown_unknown_instance(orchestrator):
    with pytest.raises(NotFoundError):
        await orchestrator.teardown("nope")


@pytest.mark.asyncio
async def test_teardown_forgets_instance_lock(store, orchestrator, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    assert instance.id in orchestrator._locks

    await orchestrator.teardown(instance.id)

    assert instance.id not in orchestrator._locks


@pytest.mark.asyncio
async def test_row_deleted_mid_provision_releases_attempt_resources(store, orchestrator, runtime, user_id):
    instance = await store.create_instance(user_id, "gone-0001")
    real_start = runtime.start

    async def start_after_delete(container_id):
        # another process deletes the instance while this attempt is running
        await store.delete_instance(instance.id)
        await real_start(container_id)

    runtime.start = start_after_delete

    status = await orchestrator.provision(instance.id)

    assert status is None
    assert await store.get_instance(instance.id) is None
    assert runtime.containers == {}
    assert runtime.volumes == {}
    assert runtime.networks == {}


@pytest.mark.asyncio
async def test_instance_failed_elsewhere_mid_provision_drops_started_container(store, orchestrator, runtime, user_id):
    instance = await store.create_instance(user_id, "lost-0002")
    real_start = runtime.start

    async def start_after_failure(container_id):
        await store.mark_provisioning_failed(instance.id, "marked failed by another worker")
        await real_start(container_id)

    runtime.start = start_after_failure

    status = await orchestrator.provision(instance.id)

    assert status == InstanceStatus.ERROR.value
    assert (await store.get_instance(instance.id)).container_id is None
    assert runtime.containers == {}


# ============ Reconcile ============

@pytest.mark.asyncio
async def test_reconcile_after_out_of_band_removal(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    runtime.containers.clear()

    status = await orchestrator.reconcile(instance.id)

    stored = await store.get_instance(instance.id)
    assert status == InstanceStatus.ERROR.value
    assert stored.status == InstanceStatus.ERROR.value
    assert stored.error_message == CONTAINER_NOT_FOUND
    assert stored.container_id is None


@pytest.mark.asyncio
async def test_reconcile_trusts_runtime(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)

    runtime.containers[instance.container_id]["running"] = False
    assert await orchestrator.reconcile(instance.id) == InstanceStatus.STOPPED.value

    runtime.containers[instance.container_id]["running"] = True
    runtime.containers[instance.container_id]["health"] = "unhealthy"
    assert await orchestrator.reconcile(instance.id) == InstanceStatus.ERROR.value
    assert (await store.get_instance(instance.id)).error_message == "Container is unhealthy"

    runtime.containers[instance.container_id]["health"] = "healthy"
    assert await orchestrator.reconcile(instance.id) == InstanceStatus.RUNNING.value
    assert (await store.get_instance(instance.id)).error_message is None


@pytest.mark.asyncio
async def test_reconcile_leaves_provisioning_alone(store, orchestrator, user_id):
    instance = await store.create_instance(user_id, "queued-0001")
    assert await orchestrator.reconcile(instance.id) == InstanceStatus.PROVISIONING.value


@pytest.mark.asyncio
async def test_reconcile_engine_unreachable_keeps_record(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    runtime.fail["inspect_status"] = EngineUnavailableError("engine down")

    with pytest.raises(EngineUnavailableError):
        await orchestrator.reconcile(instance.id)

    assert (await store.get_instance(instance.id)).status == InstanceStatus.RUNNING.value


@pytest.mark.asyncio
async def test_reconcile_all_counts(store, orchestrator, runtime):
    a = await _provisioned(store, orchestrator, "user-a", subdomain="a-0001")
    await _provisioned(store, orchestrator, "user-b", subdomain="b-0001")
    runtime.containers[a.container_id]["running"] = False

    counts = await orchestrator.reconcile_all()

    assert counts == {"stopped": 1, "running": 1}


# ============ Lifecycle ============

@pytest.mark.asyncio
async def test_stop_start_restart(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)

    assert await orchestrator.stop(instance.id) == InstanceStatus.STOPPED.value
    assert runtime.containers[instance.container_id]["running"] is False
    assert await orchestrator.start(instance.id) == InstanceStatus.RUNNING.value
    assert await orchestrator.restart(instance.id) == InstanceStatus.RUNNING.value
    assert (await store.get_instance(instance.id)).status == InstanceStatus.RUNNING.value


@pytest.mark.asyncio
async def test_action_on_vanished_container_marks_error(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    runtime.containers.clear()

    with pytest.raises(ContainerNotFoundError):
        await orchestrator.start(instance.id)

    stored = await store.get_instance(instance.id)
    assert stored.status == InstanceStatus.ERROR.value
    assert stored.container_id is None


@pytest.mark.asyncio
async def test_action_without_container(store, orchestrator, user_id):
    instance = await store.create_instance(user_id, "pending-01")
    with pytest.raises(NotFoundError):
        await orchestrator.stop(instance.id)


@pytest.mark.asyncio
async def test_recreate_requeues_and_keeps_volumes(store, orchestrator, runtime, user_id):
    instance = await _provisioned(store, orchestrator, user_id)
    volumes_before = set(runtime.volumes)

    status = await orchestrator.recreate(instance.id)

    stored = await store.get_instance(instance.id)
    assert status == InstanceStatus.PROVISIONING.value
    assert stored.status == InstanceStatus.PROVISIONING.value
    assert stored.container_id is None
    assert runtime.containers == {}
    assert set(runtime.volumes) == volumes_before


# ============ Store ============

@pytest.mark.asyncio
async def test_second_instance_for_user_conflicts(store, user_id):
    first = await store.create_instance(user_id, "one-0001")

    with pytest.raises(ConflictError) as exc_info:
        await store.create_instance(user_id, "two-0002")

    assert exc_info.value.instance_id == first.id


@pytest.mark.asyncio
async def test_taken_subdomain_conflicts_without_instance_id(store):
    await store.create_instance("user-1", "same-name")

    with pytest.raises(ConflictError) as exc_info:
        await store.create_instance("user-2", "same-name")

    assert exc_info.value.instance_id is None
    assert await store.get_instance_for_user("user-2") is None


@pytest.mark.asyncio
async def test_status_never_moves_back_to_running_after_failure(store, user_id):
    instance = await store.create_instance(user_id, "race-0001")
    assert await store.mark_provisioning_failed(instance.id, "boom")

    assert await store.mark_running(instance.id, "c123") is False
    assert (await store.get_instance(instance.id)).status == InstanceStatus.ERROR.value


@pytest.mark.asyncio
async def test_config_secrets_encrypted_at_rest(store, session_factory, user_id):
    from c4g.db.models import InstanceConfig

    instance = await store.create_instance(
        user_id, "secret-001", secrets={"openai_api_key": "sk-openai-1"}
    )
    async with session_factory() as db:
        row = await db.get(InstanceConfig, instance.id)
    assert row.openai_key_encrypted.startswith("enc:")
    assert "sk-openai-1" not in row.openai_key_encrypted

    await store.upsert_config(instance.id, secrets={"openai_api_key": ""})
    config = await store.get_config(instance.id)
    assert config.secrets.openai_api_key is None
