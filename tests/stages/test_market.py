"""Tests for the market analysis stage."""

import pytest
from conftest import ScoringDecide, make_candidate

from token_filter_pipeline.llm.client import LLMClientError
from token_filter_pipeline.stages.market import MarketAnalysisStage
from token_filter_pipeline.stages.models import StageName


@pytest.fixture
def candidates():
    """Twenty fresh candidates."""
    return [make_candidate(f"Mint{i:03d}") for i in range(20)]


class TestMarketAnalysisStage:
    """Tests for MarketAnalysisStage."""

    async def test_omitted_candidates_rejected(self, candidates) -> None:
        """Test candidates missing from the response are rejected, not passed."""
        decide = ScoringDecide(omit={"Mint003", "Mint017"})
        result = await MarketAnalysisStage(decide, threshold=0.5).run(candidates)

        assert len(result.survivors) == 18
        assert {c.address for c in result.rejected} == {"Mint003", "Mint017"}
        assert result.stats.count_in == 20
        assert result.stats.count_out == 18
        assert result.stats.count_errored == 2
        for c in result.rejected:
            assert c.score_for(StageName.MARKET) is None
            assert c.rejected_by == StageName.MARKET

    async def test_rejected_candidates_cannot_be_scored_later(self, candidates) -> None:
        """Test a rejected candidate is final."""
        decide = ScoringDecide(omit={"Mint003"})
        result = await MarketAnalysisStage(decide).run(candidates)

        with pytest.raises(ValueError):
            result.rejected[0].with_score(result.survivors[0].stage_scores[0])

    async def test_threshold(self, candidates) -> None:
        """Test low scores are recorded and the candidate rejected."""
        decide = ScoringDecide({"Mint000": 0.2, "Mint001": 0.5})
        result = await MarketAnalysisStage(decide, threshold=0.5).run(candidates[:3])

        rejected = {c.address: c for c in result.rejected}
        assert set(rejected) == {"Mint000"}
        assert rejected["Mint000"].score_for(StageName.MARKET).score == 0.2
        assert result.stats.count_errored == 0
        assert "Mint001" in {c.address for c in result.survivors}

    async def test_out_of_range_scores_clamped(self, candidates) -> None:
        """Test scores outside [0, 1] are clamped and flagged."""
        decide = ScoringDecide({"Mint000": 1.4, "Mint001": -3})
        result = await MarketAnalysisStage(decide, threshold=0.5).run(candidates[:2])

        high = result.survivors[0].score_for(StageName.MARKET)
        assert high.score == 1.0
        assert high.clamped is True
        low = result.rejected[0].score_for(StageName.MARKET)
        assert low.score == 0.0
        assert low.clamped is True

    async def test_non_numeric_score_rejected(self, candidates) -> None:
        """Test a non-numeric score counts as an error."""
        decide = ScoringDecide({"Mint000": "very good"})
        result = await MarketAnalysisStage(decide).run(candidates[:2])

        assert [c.address for c in result.rejected] == ["Mint000"]
        assert result.rejected[0].rejection_reason == "non-numeric score"
        assert result.stats.count_errored == 1

    async def test_failed_batch_rejects_only_that_batch(self, candidates) -> None:
        """Test a failed decision call rejects its batch and nothing else."""
        decide = ScoringDecide(fail_when={"Mint012": LLMClientError("bad gateway")})
        result = await MarketAnalysisStage(decide, batch_size=10).run(candidates)

        assert len(decide.calls) == 2
        assert {c.address for c in result.survivors} == {f"Mint{i:03d}" for i in range(10)}
        assert len(result.rejected) == 10
        assert result.stats.count_errored == 10
        assert len(result.errors) == 1

    async def test_batches_respect_size(self) -> None:
        """Test candidates are split into batches of batch_size."""
        decide = ScoringDecide()
        many = [make_candidate(f"Mint{i:03d}") for i in range(45)]
        result = await MarketAnalysisStage(decide, batch_size=20).run(many)

        assert sorted(len(p["tokens"]) for _, p in decide.calls) == [5, 20, 20]
        assert result.stats.count_out == 45

    async def test_scores_carry_reasons(self, candidates) -> None:
        """Test strengths and risks are recorded."""
        result = await MarketAnalysisStage(ScoringDecide()).run(candidates[:1])

        score = result.survivors[0].score_for(StageName.MARKET)
        assert score.strengths == ("volume",)
        assert score.risks == ("new listing",)

    async def test_empty_input(self) -> None:
        """Test an empty candidate set makes no decision calls."""
        decide = ScoringDecide()
        result = await MarketAnalysisStage(decide).run([])

        assert decide.calls == []
        assert result.survivors == []
        assert result.stats.count_in == 0

    @pytest.mark.parametrize("batch_size", [0, 51])
    def test_batch_size_bounds(self, batch_size: int) -> None:
        with pytest.raises(ValueError):
            MarketAnalysisStage(ScoringDecide(), batch_size=batch_size)
