"""Persistence of engine outputs. The engine itself never writes; callers use these."""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from fci_engine.errors import ScenarioStateError
from fci_engine.forecasting.condition_predictor import record_outcome
from fci_engine.models.enums import (
    AggregationLevel,
    CurveType,
    IssueKind,
    PredictionMethod,
    ScenarioStatus,
)
from fci_engine.models.orm import (
    CashFlowProjectionRecord,
    ConditionSnapshotRecord,
    OptimizationScenarioRecord,
    PredictionHistoryRecord,
    RiskScoreRecord,
    ScenarioStrategyRecord,
)
from fci_engine.models.schemas import (
    ConditionSnapshot,
    EngineIssue,
    OptimizationResult,
    PredictionHistoryEntry,
    RiskScore,
)

logger = logging.getLogger(__name__)


def _nullable_eq(column, value):
    return column.is_(None) if value is None else column == value


def _to_decimal(value: float | None) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def save_snapshot(session: Session, snapshot: ConditionSnapshot) -> ConditionSnapshotRecord:
    """Write one snapshot row per (project, level, entity), replacing any previous one."""
    session.execute(
        delete(ConditionSnapshotRecord).where(
            _nullable_eq(ConditionSnapshotRecord.project_id, snapshot.project_id),
            ConditionSnapshotRecord.level == snapshot.level.value,
            _nullable_eq(ConditionSnapshotRecord.entity_id, snapshot.entity_id),
        )
    )
    record = ConditionSnapshotRecord(
        project_id=snapshot.project_id,
        level=snapshot.level.value,
        entity_id=snapshot.entity_id,
        ci=snapshot.ci,
        fci=snapshot.fci,
        fci_defined=snapshot.fci_defined,
        deferred_maintenance_cost=snapshot.deferred_maintenance_cost,
        current_replacement_value=snapshot.current_replacement_value,
        assessed_count=snapshot.assessed_count,
        excluded_count=snapshot.excluded_count,
        calculated_at=snapshot.calculated_at,
        calculation_method=snapshot.calculation_method,
    )
    session.add(record)
    session.flush()
    logger.info(
        "Saved %s snapshot for %s/%s", snapshot.level.value, snapshot.project_id, snapshot.entity_id
    )
    return record


def load_snapshot(
    session: Session,
    level: AggregationLevel,
    entity_id: str | None = None,
    project_id: str | None = None,
) -> ConditionSnapshot | None:
    record = session.scalars(
        select(ConditionSnapshotRecord).where(
            _nullable_eq(ConditionSnapshotRecord.project_id, project_id),
            ConditionSnapshotRecord.level == level.value,
            _nullable_eq(ConditionSnapshotRecord.entity_id, entity_id),
        )
    ).first()
    if record is None:
        return None

    issues = []
    if not record.fci_defined:
        issues.append(
            EngineIssue(
                kind=IssueKind.UNDEFINED_RATIO,
                message="Replacement value is zero; FCI is undefined",
                record_id=record.entity_id,
                field="fci",
            )
        )
    return ConditionSnapshot(
        project_id=record.project_id,
        level=AggregationLevel(record.level),
        entity_id=record.entity_id,
        ci=record.ci,
        fci=record.fci if record.fci_defined else None,
        deferred_maintenance_cost=record.deferred_maintenance_cost,
        current_replacement_value=record.current_replacement_value,
        assessed_count=record.assessed_count,
        excluded_count=record.excluded_count,
        calculated_at=record.calculated_at,
        calculation_method=record.calculation_method,
        issues=issues,
    )


def save_risk_score(
    session: Session,
    assessment_id: str,
    score: RiskScore,
    scored_at: datetime | None = None,
) -> RiskScoreRecord:
    record = RiskScoreRecord(
        assessment_id=assessment_id,
        pof=_to_decimal(score.pof),
        cof=_to_decimal(score.cof),
        risk_score=_to_decimal(score.risk_score),
        risk_level=score.risk_level.value if score.risk_level else None,
        combination_rule=score.rule.value,
        notes=json.dumps(score.notes, sort_keys=True) if score.notes else None,
        scored_at=scored_at or datetime.now(timezone.utc),
    )
    session.add(record)
    session.flush()
    return record


def _entry_from_record(record: PredictionHistoryRecord) -> PredictionHistoryEntry:
    return PredictionHistoryEntry(
        project_id=record.project_id,
        component_code=record.component_code,
        predicted_at=record.predicted_at,
        method=PredictionMethod(record.method),
        curve_used=CurveType(record.curve_used) if record.curve_used else None,
        model_version=record.model_version,
        predicted_failure_year=record.predicted_failure_year,
        predicted_remaining_life=record.predicted_remaining_life,
        predicted_condition=record.predicted_condition,
        confidence_score=record.confidence_score,
        actual_failure_year=record.actual_failure_year,
        actual_condition_at_date=record.actual_condition_at_date,
        actual_date=record.actual_date,
        prediction_accuracy=record.prediction_accuracy,
    )


def record_prediction(
    session: Session, entry: PredictionHistoryEntry
) -> PredictionHistoryRecord:
    record = PredictionHistoryRecord(
        project_id=entry.project_id,
        component_code=entry.component_code,
        predicted_at=entry.predicted_at,
        method=entry.method.value,
        curve_used=entry.curve_used.value if entry.curve_used else None,
        model_version=entry.model_version,
        predicted_failure_year=entry.predicted_failure_year,
        predicted_remaining_life=entry.predicted_remaining_life,
        predicted_condition=entry.predicted_condition,
        confidence_score=entry.confidence_score,
    )
    session.add(record)
    session.flush()
    return record


def record_prediction_outcome(
    session: Session,
    prediction_id: int,
    actual_failure_year: int | None = None,
    actual_condition: float | None = None,
    actual_date: date | None = None,
) -> PredictionHistoryEntry:
    """Store a realized outcome and the retrospective accuracy of the prediction."""
    record = session.get(PredictionHistoryRecord, prediction_id)
    if record is None:
        raise ValueError(f"Prediction {prediction_id} not found")

    scored = record_outcome(
        _entry_from_record(record), actual_failure_year, actual_condition, actual_date
    )
    record.actual_failure_year = scored.actual_failure_year
    record.actual_condition_at_date = scored.actual_condition_at_date
    record.actual_date = scored.actual_date
    record.prediction_accuracy = scored.prediction_accuracy
    session.flush()
    return scored


def save_optimization(
    session: Session,
    result: OptimizationResult,
    optimized_at: datetime | None = None,
) -> OptimizationScenarioRecord:
    """Persist an optimized scenario with its strategies and cash flows.

    Re-saving a scenario with the same id replaces the earlier run.
    """
    scenario = result.scenario
    if scenario.status is not ScenarioStatus.OPTIMIZED:
        raise ScenarioStateError(
            f"Only optimized results can be saved; '{scenario.name}' is {scenario.status.value}",
            field="status",
            value=scenario.status.value,
        )

    if scenario.id is not None:
        existing = session.scalars(
            select(OptimizationScenarioRecord).where(
                OptimizationScenarioRecord.scenario_key == scenario.id
            )
        ).first()
        if existing is not None:
            session.delete(existing)
            session.flush()

    summary = result.summary
    record = OptimizationScenarioRecord(
        scenario_key=scenario.id,
        project_id=scenario.project_id,
        name=scenario.name,
        status=scenario.status.value,
        budget_constraint=scenario.budget_constraint,
        budget_type=scenario.budget_type.value,
        time_horizon=scenario.time_horizon,
        discount_rate=_to_decimal(scenario.discount_rate),
        optimization_goal=scenario.optimization_goal.value,
        total_cost=summary.total_cost,
        total_benefit=summary.total_benefit,
        npv=summary.npv,
        roi=summary.roi,
        payback_period=summary.payback_period,
        ci_before=summary.ci_before,
        ci_after=summary.ci_after,
        fci_before=summary.fci_before,
        fci_after=summary.fci_after,
        risk_before=_to_decimal(summary.risk_before),
        risk_after=_to_decimal(summary.risk_after),
        is_partial=result.is_partial,
        optimized_at=optimized_at or datetime.now(timezone.utc),
    )
    for s in result.strategies:
        record.strategies.append(
            ScenarioStrategyRecord(
                strategy_key=s.id,
                component_code=s.component_code,
                asset_id=s.asset_id,
                strategy=s.strategy.value,
                action_year=s.action_year,
                deferral_years=s.deferral_years,
                strategy_cost=s.strategy_cost,
                present_value_cost=s.present_value_cost,
                life_extension=s.life_extension,
                condition_improvement=s.condition_improvement,
                risk_reduction=s.risk_reduction,
                failure_cost_avoided=s.failure_cost_avoided,
                maintenance_savings=s.maintenance_savings,
                priority_score=s.priority_score,
                selected=s.selected,
                over_budget=s.over_budget,
                skip_reason=s.skip_reason.value if s.skip_reason else None,
            )
        )
    for cf in result.cash_flows:
        record.cash_flows.append(
            CashFlowProjectionRecord(
                year=cf.year,
                capital_cost=cf.capital_cost,
                maintenance_cost=cf.maintenance_cost,
                operating_cost=cf.operating_cost,
                cost_avoidance=cf.cost_avoidance,
                efficiency_gains=cf.efficiency_gains,
                net_cash_flow=cf.net_cash_flow,
                cumulative_cash_flow=cf.cumulative_cash_flow,
                projected_ci=cf.projected_ci,
                projected_fci=cf.projected_fci,
            )
        )

    session.add(record)
    session.flush()
    logger.info(
        "Saved scenario %s with %d strategies and %d cash-flow years",
        scenario.name,
        len(record.strategies),
        len(record.cash_flows),
    )
    return record
