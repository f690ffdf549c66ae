"""Shared test fixtures and configuration for pytest."""
import pytest

from recsynth.bootstrap import build_engine
from recsynth.cache.store import TieredCacheStore
from recsynth.config.settings import Settings

from tests.fakes import FakeBackingStore, FakeClock, FakeHistory, ScriptedTransport, make_response


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backing() -> FakeBackingStore:
    return FakeBackingStore()


@pytest.fixture
def store(clock, backing) -> TieredCacheStore:
    return TieredCacheStore(backing=backing, clock=clock)


@pytest.fixture
def transport(clock) -> ScriptedTransport:
    return ScriptedTransport(clock, [make_response()])


@pytest.fixture
def history() -> FakeHistory:
    return FakeHistory()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(OPENAI_API_KEY="test-key", LOG_LEVEL="DEBUG")


@pytest.fixture
def engine(test_settings, clock, transport, history):
    """Fully wired engine with fake transport, clock and history, no persistence."""
    return build_engine(test_settings, transport=transport, clock=clock, history=history, persist=False)


@pytest.fixture
def orchestrator(engine):
    return engine.orchestrator
