"""
Shared fixtures: in-memory database, an in-memory container runtime and
httpx clients backed by MockTransport.
"""

import itertools
import uuid
from typing import Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from c4g.config import Settings
from c4g.db import create_engine_and_sessionmaker, init_db
from c4g.exceptions import ContainerNotFoundError
from c4g.runtime.docker_runtime import RuntimeStatus
from c4g.runtime.labels import ContainerSpec
from c4g.services.instance_store import InstanceStore
from c4g.services.orchestrator import ProvisioningOrchestrator
from c4g.utils.crypto import CredentialCipher


class FakeRuntime:
    """Stands in for DockerRuntime: same async surface, state kept in dicts."""

    def __init__(self):
        self.helper_image = "busybox:latest"
        self.images: set = set()
        self.volumes: Dict[str, Dict[str, str]] = {}  # volume → {path: content}
        self.networks: Dict[str, List[str]] = {}  # network → attached container ids
        self.containers: Dict[str, dict] = {}  # id → {"spec", "running", "health"}
        self.calls: List[str] = []
        self.exec_log: List[List[str]] = []
        self.fail: Dict[str, Exception] = {}  # method name → error to raise
        self.created = 0
        self._ids = itertools.count(1)

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]

    def _container(self, container_id: str) -> dict:
        if container_id not in self.containers:
            raise ContainerNotFoundError(f"container {container_id}: not found")
        return self.containers[container_id]

    def close(self) -> None:
        pass

    async def ping(self) -> bool:
        return True

    async def ensure_image(self, ref: str, timeout: float) -> None:
        self._maybe_fail("ensure_image")
        self.images.add(ref)

    async def create_volume(self, name: str) -> bool:
        self._maybe_fail("create_volume")
        if name in self.volumes:
            return False
        self.volumes[name] = {}
        return True

    async def remove_volume(self, name: str) -> None:
        self._maybe_fail("remove_volume")
        if name not in self.volumes:
            raise ContainerNotFoundError(f"volume {name}: not found")
        del self.volumes[name]

    async def create_isolated_network(self, name: str) -> bool:
        self._maybe_fail("create_isolated_network")
        if name in self.networks:
            return False
        self.networks[name] = []
        return True

    async def remove_network(self, name: str) -> None:
        self._maybe_fail("remove_network")
        if name not in self.networks:
            raise ContainerNotFoundError(f"network {name}: not found")
        del self.networks[name]

    async def connect_network(self, network_name: str, container_id: str) -> None:
        self._maybe_fail("connect_network")
        attached = self.networks.setdefault(network_name, [])
        if container_id not in attached:
            attached.append(container_id)

    async def find_container(self, name: str) -> Optional[str]:
        for cid, c in self.containers.items():
            if c["spec"].name == name:
                return cid
        return None

    async def create_container(self, spec: ContainerSpec) -> str:
        self._maybe_fail("create_container")
        existing = await self.find_container(spec.name)
        if existing:
            return existing
        cid = f"c{next(self._ids):011d}"
        self.containers[cid] = {"spec": spec, "running": False, "health": None}
        self.created += 1
        return cid

    async def start(self, container_id: str) -> None:
        self._maybe_fail("start")
        self._container(container_id)["running"] = True

    async def stop(self, container_id: str, grace_seconds: int = 10) -> None:
        self._maybe_fail("stop")
        self._container(container_id)["running"] = False

    async def restart(self, container_id: str, grace_seconds: int = 10) -> None:
        self._maybe_fail("restart")
        self._container(container_id)["running"] = True

    async def remove(self, container_id: str, remove_volumes: bool = False) -> List[str]:
        self._maybe_fail("remove")
        container = self._container(container_id)
        del self.containers[container_id]
        removed = []
        if remove_volumes:
            for volume in container["spec"].volumes:
                if self.volumes.pop(volume, None) is not None:
                    removed.append(volume)
        return removed

    async def inspect_status(self, container_id: str) -> RuntimeStatus:
        self._maybe_fail("inspect_status")
        c = self._container(container_id)
        if not c["running"]:
            return RuntimeStatus.STOPPED
        if c["health"] == "unhealthy":
            return RuntimeStatus.ERROR
        return RuntimeStatus.RUNNING

    async def exec_one_shot(self, container_id, command, timeout, user=None) -> str:
        self._maybe_fail("exec_one_shot")
        self._container(container_id)
        self.exec_log.append(list(command))
        return ""

    async def write_files_in_container(self, container_id, base_dir, files, timeout, user=None) -> None:
        self._maybe_fail("write_files_in_container")
        spec = self._container(container_id)["spec"]
        volume = next(v for v, path in spec.volumes.items() if path == base_dir)
        self.volumes[volume].update(files)

    async def write_volume_files(self, volume, files, timeout, owner="1000:1000", keep_existing=()) -> None:
        self._maybe_fail("write_volume_files")
        if volume not in self.volumes:
            raise ContainerNotFoundError(f"volume {volume}: not found")
        target = self.volumes[volume]
        for path, content in files.items():
            if path in keep_existing and path in target:
                continue
            target[path] = content


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret="test-jwt-secret",
        encryption_key="unit-test-encryption-key",
        telegram_bot_token="123456:TEST",
        telegram_bot_username="Claw4Growth_bot",
        telegram_webhook_secret="hook-secret",
        telegram_api_base="https://telegram.test",
        stripe_webhook_secret="whsec_test",
        stripe_enterprise_price_id="price_enterprise",
        minimax_api_key="mm-platform-key",
        composio_api_key=None,
        reconcile_interval_seconds=0,
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    """Fresh in-memory database per test"""
    engine, factory = create_engine_and_sessionmaker(settings.database_url)
    await init_db(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def cipher(settings) -> CredentialCipher:
    return CredentialCipher(settings.encryption_key)


@pytest.fixture
def store(session_factory, cipher) -> InstanceStore:
    return InstanceStore(session_factory, cipher)


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def orchestrator(store, runtime, settings) -> ProvisioningOrchestrator:
    return ProvisioningOrchestrator(store, runtime, settings)


@pytest.fixture
def nova_onboarding() -> dict:
    return {
        "operatorName": "Nova",
        "brand": {"name": "Acme", "industry": "saas"},
        "tone": "friendly",
    }


@pytest.fixture
def mock_http():
    """Build an AsyncClient whose requests are answered by ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())

