"""
Shared fixtures: a temporary SQLite database, a controllable clock and a
fake OAuth provider served through ``httpx.MockTransport``.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from connectors.encryption import TokenCipher
from connectors.exchanger import TokenExchanger
from connectors.registry import ProviderRegistry
from connectors.scheduler import RefreshScheduler
from connectors.service import ConnectionService
from connectors.state import StateIssuer
from connectors.token_manager import CredentialStore
from database.session import build_engine, build_session_factory, init_models
from tests.helpers import TEST_PLATFORMS, VIEW_URL, FakeProvider, FrozenClock, make_provider


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry(make_provider(p) for p in TEST_PLATFORMS)


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher([Fernet.generate_key()])


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'connections.db'}")
    await init_models(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def issuer(session_factory, clock) -> StateIssuer:
    return StateIssuer(session_factory, "test-state-secret", clock=clock)


@pytest.fixture
def exchanger(registry, fake_provider) -> TokenExchanger:
    return TokenExchanger(registry, timeout=10.0, transport=httpx.MockTransport(fake_provider.handler))


@pytest.fixture
def store(session_factory, cipher, clock) -> CredentialStore:
    return CredentialStore(session_factory, cipher, clock=clock)


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def scheduler(store, exchanger, notifier, issuer, clock) -> RefreshScheduler:
    return RefreshScheduler(
        store,
        exchanger,
        buffer_seconds=300,
        interval_seconds=0.01,
        notifier=notifier,
        state_issuer=issuer,
        clock=clock,
    )


@pytest.fixture
def service(registry, issuer, exchanger, store, scheduler) -> ConnectionService:
    return ConnectionService(
        registry,
        issuer,
        exchanger,
        store,
        scheduler,
        connections_view_url=VIEW_URL,
    )
