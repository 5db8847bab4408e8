"""
Pytest fixtures for the Explore Director test suite.

Provides reusable fixtures for the player snapshot, the store and its
scripted clock, the snippet catalog, the AI Director, and a fully wired
exploration state machine.
"""

import pytest

from src.ai.director import AIDirectorManager, DirectorConfig
from src.content_loader.snippet_repository import default_catalog
from src.data_models import PlayerState
from src.encounter.event_engine import SnippetEventEngine
from src.explore.explore_state_machine import ExploreStateMachine
from src.game_state.state_machine import PhaseKind, StateMachine
from src.game_state.state_store import PlayerStateStore
from src.narrative.consequence_interpreter import ConsequenceInterpreter
from src.narrative.reward_gateway import LedgerRewardGateway
from src.observability.run_log import reset_run_log


START_MILLIS = 1_000_000


class FakeClock:
    """Scripted millisecond clock. Time only moves when a test advances it."""

    def __init__(self, start: int = START_MILLIS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> int:
        self.now += millis
        return self.now


# =============================================================================
# RUN LOG
# =============================================================================


@pytest.fixture(autouse=True)
def clean_run_log():
    """Every test starts and ends with an empty, unpaused run log."""
    log = reset_run_log()
    log.resume()
    yield log
    log.resume()
    reset_run_log()


# =============================================================================
# PLAYER STATE FIXTURES
# =============================================================================


@pytest.fixture
def clock():
    """Scripted clock starting at START_MILLIS."""
    return FakeClock()


@pytest.fixture
def player():
    """A fresh player with an empty choice log."""
    return PlayerState(player_id="jalmar", name="Jalmar")


@pytest.fixture
def store(player, clock):
    """Player state store driven by the scripted clock."""
    return PlayerStateStore(player, time_provider=clock)


# =============================================================================
# SUBSYSTEM FIXTURES
# =============================================================================


@pytest.fixture
def repository():
    """The built-in starter catalog."""
    return default_catalog()


@pytest.fixture
def ledger():
    """Empty reward ledger with unlimited inventory."""
    return LedgerRewardGateway()


@pytest.fixture
def interpreter(ledger):
    return ConsequenceInterpreter(ledger)


@pytest.fixture
def director(store):
    return AIDirectorManager(store, DirectorConfig())


@pytest.fixture
def engine(repository, store):
    """Snippet event engine with no chapter trigger."""
    return SnippetEventEngine(repository, clock=store.now)


@pytest.fixture
def phase_machine():
    """A bare phase machine starting in IDLE."""
    return StateMachine(PhaseKind.IDLE)


@pytest.fixture
def make_machine(store, repository, interpreter, director):
    """Factory for an exploration state machine around a given event engine."""

    def _make(event_engine, **kwargs):
        return ExploreStateMachine(
            store=store,
            repository=repository,
            interpreter=interpreter,
            director=director,
            event_engine=event_engine,
            **kwargs,
        )

    return _make


@pytest.fixture
def machine(make_machine, engine):
    """Exploration state machine using the default snippet event engine."""
    return make_machine(engine)
