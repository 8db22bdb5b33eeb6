from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from fci_engine.config.resolution import resolve_curve_config
from fci_engine.financial.capital_optimizer import CapitalPlanningOptimizer
from fci_engine.financial.scenario import approve, completed_maintenance_entries, implement
from fci_engine.financial.strategy_generator import generate_strategy_options
from fci_engine.forecasting.condition_aggregator import ConditionAggregator
from fci_engine.forecasting.condition_predictor import ConditionPredictor
from fci_engine.models.enums import AggregationLevel, PredictionMethod, ScenarioStatus
from fci_engine.models.orm import OptimizationScenarioRecord, PredictionHistoryRecord
from fci_engine.models.repository import (
    load_snapshot,
    record_prediction,
    save_optimization,
    save_risk_score,
    save_snapshot,
)
from fci_engine.models.schemas import (
    CoFFactors,
    ComponentContext,
    HistoricalCondition,
    PoFFactors,
)
from fci_engine.risk.scorer import RiskScorer

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestFullPipeline:
    def test_assess_score_plan_implement(
        self, session, three_component_assessments, draft_scenario
    ):
        """Full pipeline: aggregate -> risk -> predict -> optimize -> implement."""
        aggregator = ConditionAggregator()
        building = aggregator.building_snapshot(
            three_component_assessments, "BLDG-1", "P-1", now=NOW
        )
        for snapshot in aggregator.system_snapshots(three_component_assessments, "P-1", NOW):
            save_snapshot(session, snapshot)
        save_snapshot(session, building)
        assert load_snapshot(session, AggregationLevel.BUILDING, "BLDG-1", "P-1").fci == (
            Decimal("2.1429")
        )

        scorer = RiskScorer()
        consequences = {"B30": 0.6, "D30": 0.8, "D20": 0.4}
        for assessment in three_component_assessments:
            result = scorer.score(
                PoFFactors(
                    condition_index=float(aggregator.condition_score(assessment)),
                    age=assessment.expected_useful_life - assessment.remaining_useful_life,
                    expected_useful_life=assessment.expected_useful_life,
                ),
                CoFFactors(safety=consequences[assessment.component_code]),
                record_id=assessment.id,
            )
            assert 0.0 <= result.risk_score <= 1.0
            save_risk_score(session, assessment.id, result, scored_at=NOW)

        predictor = ConditionPredictor()
        roof = ComponentContext(component_code="B30", project_id="P-1", install_year=2005)
        history = [
            HistoricalCondition(assessed_at=date(2021 + i, 5, 1), condition=74 - 3 * i)
            for i in range(4)
        ]
        prediction = predictor.predict(
            roof,
            resolve_curve_config("B30"),
            history,
            PredictionMethod.HYBRID,
            as_of=date(2025, 1, 15),
            now=NOW,
        )
        assert prediction.method == PredictionMethod.HYBRID
        assert prediction.predicted_failure_year >= 2025
        record_prediction(session, prediction.history)
        assert session.scalars(select(PredictionHistoryRecord)).first() is not None

        candidates = []
        for assessment in three_component_assessments:
            candidates.extend(
                generate_strategy_options(
                    assessment, 2025, 3, consequence=consequences[assessment.component_code]
                )
            )
        optimized = CapitalPlanningOptimizer().optimize(
            draft_scenario, candidates, three_component_assessments
        )
        assert optimized.scenario.status == ScenarioStatus.OPTIMIZED
        assert optimized.summary.ci_after > optimized.summary.ci_before
        save_optimization(session, optimized, optimized_at=NOW)
        saved = session.scalars(
            select(OptimizationScenarioRecord).where(
                OptimizationScenarioRecord.scenario_key == "S-1"
            )
        ).one()
        assert saved.ci_before == Decimal("61.67")

        done = implement(approve(optimized))
        entries = completed_maintenance_entries(done)
        assert len(entries) == optimized.summary.selected_count
        assert {e.component_code for e in entries} <= {"B30", "D30", "D20"}
        assert all(e.scenario_id == "S-1" for e in entries)

    def test_portfolio_rollup_persists(self, session, three_component_assessments):
        aggregator = ConditionAggregator()
        buildings = {
            bid: [a.model_copy(update={"asset_id": bid}) for a in three_component_assessments]
            for bid in ("BLDG-1", "BLDG-2")
        }
        portfolio, snaps = aggregator.portfolio_snapshot(
            buildings, "ACME", max_workers=2, now=NOW
        )
        for snapshot in snaps + [portfolio]:
            save_snapshot(session, snapshot)

        loaded = load_snapshot(session, AggregationLevel.PORTFOLIO, "ACME")
        assert loaded.ci == Decimal("61.67")
        assert loaded.current_replacement_value == Decimal("700000.00")
