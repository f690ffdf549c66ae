"""Tests for engine wiring, the prompt registry and the refresh worker sweep."""
import pytest
from jinja2 import TemplateNotFound

from recsynth.schemas.recommendations import CacheTier, WatchHistorySummary
from recsynth.utils.prompt_registry import PromptRegistry

from refresh_worker import sweep_users
from tests.fakes import FakeHistory, sample_summary


class TestBuildEngine:
    """Tests for build_engine."""

    def test_components_are_shared(self, engine):
        assert engine.client.throttle is engine.throttle
        assert engine.client.in_flight is engine.in_flight
        assert engine.orchestrator.store is engine.store
        assert engine.orchestrator.client is engine.client
        assert engine.store.backing is None

    def test_settings_are_applied(self, engine):
        assert engine.throttle.min_interval == 2.0
        assert engine.client.max_retries == 3
        assert engine.store.ttls == {CacheTier.HOT: 3600, CacheTier.BACKGROUND: 7200}
        assert engine.orchestrator.stale_after == 30 * 60
        assert engine.orchestrator.periodic_refresh_delay == 45 * 60

    def test_scheduler_is_bound_to_orchestrator(self, engine):
        assert engine.scheduler.runner == engine.orchestrator._run_scheduled
        assert engine.scheduler.is_busy == engine.in_flight.is_in_flight


class TestPromptRegistry:
    def test_render_watch_history_prompt(self):
        summary = sample_summary()

        text = PromptRegistry().render(
            "recommend/watch_history_recommender",
            1,
            movies=summary.movies,
            tv_series=summary.tv_series,
            recommend_count=5,
        )

        assert "Top 5 Movies and Top 5 TV Series" in text
        assert "• Arrival (tt2543164): 8.0" in text
        assert "• Dark (tt5753856): 10.0" in text

    def test_empty_list_placeholder(self):
        text = PromptRegistry().render(
            "recommend/watch_history_recommender",
            1,
            movies=[],
            tv_series=sample_summary().tv_series,
            recommend_count=10,
        )

        assert "(none)" in text

    def test_unknown_template(self):
        with pytest.raises(TemplateNotFound):
            PromptRegistry().load_prompt_template("recommend/missing", 1)


class TestRefreshWorker:
    @pytest.mark.asyncio
    async def test_sweep_schedules_every_user(self, engine):
        engine.history.users = ["alice", "bob"]

        count = await sweep_users(engine)

        assert count == 2
        assert engine.scheduler.pending_count() == 2

    @pytest.mark.asyncio
    async def test_sweep_survives_history_failure(self, engine):
        class BrokenHistory(FakeHistory):
            def list_users_with_history(self):
                raise ConnectionError("mongo unreachable")

        engine.history = BrokenHistory(WatchHistorySummary())

        assert await sweep_users(engine) == 0
