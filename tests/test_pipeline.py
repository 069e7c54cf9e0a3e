"""Tests for the pipeline orchestrator."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeMarketData, FlakyStore, raw_token

from token_filter_pipeline.config import ConfigurationError
from token_filter_pipeline.ingestor.models import TokenHolding
from token_filter_pipeline.pipeline import PipelineState, build_orchestrator, run_pipeline
from token_filter_pipeline.stages.persistence import result_key
from token_filter_pipeline.storage.document_store import (
    MARKET_SNAPSHOTS,
    PIPELINE_RESULTS,
    PIPELINE_RUNS,
    DocumentStoreError,
    SQLDocumentStore,
)
from token_filter_pipeline.storage.repos import TrackedWalletDTO

# ============================================================================
# Fixtures
# ============================================================================


class RoutingDecide:
    """Decision function fake that answers each stage by payload shape."""

    def __init__(self, *, score: float = 0.8, on_scoring=None) -> None:
        self.score = score
        self.on_scoring = on_scoring
        self.prompts: list[str] = []

    async def __call__(self, prompt_text: str, payload) -> str:
        self.prompts.append(prompt_text)
        if "objective" in payload:
            return json.dumps({"min_liquidity": 500})
        if "tokens" in payload:
            if self.on_scoring is not None:
                self.on_scoring()
            entries = [{"address": t["address"], "score": self.score} for t in payload["tokens"]]
            return json.dumps({"tokens": entries})
        return json.dumps(
            {
                "market_analysis": "ok",
                "sentiment_analysis": "ok",
                "social_signals": "ok",
                "risk_assessment": "ok",
                "final_recommendation": "ok",
                "recommendation": "watch",
                "conviction": 0.6,
            }
        )


@pytest.fixture
def market_data() -> FakeMarketData:
    """Ten valid tokens on a single page."""
    return FakeMarketData([raw_token(f"Mint{i}") for i in range(10)])


@pytest.fixture
def registry() -> AsyncMock:
    registry = AsyncMock()
    registry.list_active_wallets.return_value = [
        TrackedWalletDTO(
            id=1, name="kol", wallet_addresses=["KolWallet"], influence_score=Decimal("0.7")
        )
    ]
    return registry


# ============================================================================
# run_pipeline Tests
# ============================================================================


class TestRunPipeline:
    """End-to-end runs with fake collaborators."""

    async def test_happy_path(self, settings, market_data, registry) -> None:
        """Test a full run reaches DONE and persists every survivor."""
        market_data.holdings[("KolWallet", "Mint3")] = TokenHolding(
            "KolWallet", "Mint3", balance=10.0
        )
        store = FlakyStore()

        summary = await run_pipeline(
            settings,
            market_data=market_data,
            decide=RoutingDecide(),
            store=store,
            registry=registry,
        )

        assert summary.state == PipelineState.DONE
        assert [s.stage for s in summary.stages] == [
            "fetch",
            "market",
            "metadata",
            "ownership",
            "reasoning",
        ]
        assert summary.survivor_count == 10
        assert summary.persisted == 10
        assert summary.parameters.filters["min_liquidity"] == settings.filter.min_liquidity
        assert len(store.collection(PIPELINE_RESULTS)) == 10
        assert len(store.collection(MARKET_SNAPSHOTS)) == 10
        assert len(store.collection(PIPELINE_RUNS)) == 1

        held = store.documents[(PIPELINE_RESULTS, result_key("Mint3", summary.run_id))]
        assert held["ownership_evidence"][0]["wallet_name"] == "kol"
        assert held["final_reasoning"]["conviction"] == 0.6

    async def test_ownership_never_changes_counts(self, settings, market_data, registry) -> None:
        summary = await run_pipeline(
            settings,
            market_data=market_data,
            decide=RoutingDecide(),
            store=FlakyStore(),
            registry=registry,
        )

        ownership = summary.stage("ownership")
        assert ownership.count_in == ownership.count_out == 10

    async def test_one_failed_write_still_done(self, settings, market_data) -> None:
        """Test 1 of 10 failed result writes gives persisted 9, failed 1, DONE."""
        store = FlakyStore({"Mint7"})

        summary = await run_pipeline(
            settings, market_data=market_data, decide=RoutingDecide(), store=store
        )

        assert summary.state == PipelineState.DONE
        assert summary.persisted == 9
        assert summary.persist_failed == 1
        assert any("Mint7" in e for e in summary.errors)

    async def test_empty_survivor_set_flows_through(self, settings, market_data) -> None:
        """Test a run where nothing survives still visits every stage."""
        store = FlakyStore()
        summary = await run_pipeline(
            settings,
            market_data=market_data,
            decide=RoutingDecide(score=0.1),
            store=store,
        )

        assert summary.state == PipelineState.DONE
        assert summary.survivor_count == 0
        assert summary.stage("market").count_out == 0
        for name in ("metadata", "ownership", "reasoning"):
            stats = summary.stage(name)
            assert stats.count_in == stats.count_out == 0
        assert store.collection(PIPELINE_RESULTS) == []
        assert len(store.collection(PIPELINE_RUNS)) == 1

    async def test_configuration_error_before_any_stage(self, settings, market_data) -> None:
        """Test a configuration error is raised before any external call."""
        settings.birdeye.api_key = None
        decide = RoutingDecide()

        with pytest.raises(ConfigurationError):
            await run_pipeline(settings, market_data=market_data, decide=decide, store=FlakyStore())

        assert decide.prompts == []

    async def test_dry_run_persists_nothing(self, settings, market_data) -> None:
        store = FlakyStore()
        summary = await run_pipeline(
            settings,
            market_data=market_data,
            decide=RoutingDecide(),
            store=store,
            dry_run=True,
        )

        assert summary.state == PipelineState.DONE
        assert store.documents == {}

    async def test_with_sql_store(self, settings, market_data, document_store) -> None:
        """Test a run against the SQL document store."""
        summary = await run_pipeline(
            settings,
            market_data=market_data,
            decide=RoutingDecide(),
            store=document_store,
        )

        assert summary.persisted == 10
        results = await document_store.query(PIPELINE_RESULTS, {"run_id": summary.run_id})
        assert len(results) == 10


# ============================================================================
# Orchestrator state Tests
# ============================================================================


class TestOrchestratorState:
    """Tests for orchestrator state handling."""

    async def test_cancel_between_stages(self, settings, market_data) -> None:
        """Test cancellation stops at the next stage boundary without persisting."""
        store = FlakyStore()
        holder = {}
        decide = RoutingDecide(on_scoring=lambda: holder["orchestrator"].cancel())
        orchestrator = build_orchestrator(
            settings, market_data=market_data, decide=decide, store=store
        )
        holder["orchestrator"] = orchestrator

        summary = await orchestrator.run()

        assert summary.state == PipelineState.CANCELLED
        assert orchestrator.state == PipelineState.CANCELLED
        assert [s.stage for s in summary.stages] == ["fetch", "market"]
        assert summary.persisted == 0
        assert store.documents == {}

    async def test_unexpected_error_fails_run(self, settings) -> None:
        """Test an unexpected exception ends in FAILED with partial stats."""
        market_data = FakeMarketData([])
        market_data.list_tokens = AsyncMock(side_effect=RuntimeError("boom"))
        orchestrator = build_orchestrator(
            settings, market_data=market_data, decide=RoutingDecide(), store=FlakyStore()
        )

        summary = await orchestrator.run()

        assert summary.state == PipelineState.FAILED
        assert summary.parameters is not None
        assert any("boom" in e for e in summary.errors)

    async def test_unreachable_store_returns_failed_summary(self, settings, market_data) -> None:
        """Test a database that cannot be reached yields a FAILED summary, not an exception."""
        decide = RoutingDecide()
        ensure = AsyncMock(side_effect=DocumentStoreError("schema initialization failed: refused"))

        with patch.object(SQLDocumentStore, "ensure_schema", ensure):
            summary = await run_pipeline(settings, market_data=market_data, decide=decide)

        assert summary.state == PipelineState.FAILED
        assert summary.stages == []
        assert summary.errors == ["schema initialization failed: refused"]
        assert decide.prompts == []

    async def test_orchestrator_runs_once(self, settings, market_data) -> None:
        orchestrator = build_orchestrator(
            settings, market_data=market_data, decide=RoutingDecide(), store=FlakyStore()
        )
        await orchestrator.run()

        with pytest.raises(RuntimeError):
            await orchestrator.run()

    async def test_initial_state_is_idle(self, settings, market_data) -> None:
        orchestrator = build_orchestrator(
            settings, market_data=market_data, decide=RoutingDecide(), store=FlakyStore()
        )
        assert orchestrator.state == PipelineState.IDLE
