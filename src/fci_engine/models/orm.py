from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class ConditionSnapshotRecord(Base):
    __tablename__ = "condition_snapshots"
    __table_args__ = (
        UniqueConstraint("project_id", "level", "entity_id", name="uq_snapshot_scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str | None] = mapped_column(String(50))
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(50))
    ci: Mapped[Decimal | None] = mapped_column(Numeric(7, 2))
    fci: Mapped[Decimal | None] = mapped_column(Numeric(9, 4))
    fci_defined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deferred_maintenance_cost: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False
    )
    current_replacement_value: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False
    )
    assessed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    excluded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calculated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    calculation_method: Mapped[str] = mapped_column(String(50), nullable=False)


class RiskScoreRecord(Base):
    __tablename__ = "risk_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[str] = mapped_column(String(50), nullable=False)
    pof: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))
    cof: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))
    risk_score: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))
    risk_level: Mapped[str | None] = mapped_column(String(20))
    combination_rule: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    scored_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class PredictionHistoryRecord(Base):
    __tablename__ = "prediction_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str | None] = mapped_column(String(50))
    component_code: Mapped[str] = mapped_column(String(20), nullable=False)
    predicted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    curve_used: Mapped[str | None] = mapped_column(String(10))
    model_version: Mapped[str] = mapped_column(String(30), nullable=False)
    predicted_failure_year: Mapped[int | None] = mapped_column(Integer)
    predicted_remaining_life: Mapped[float | None] = mapped_column(Float)
    predicted_condition: Mapped[float | None] = mapped_column(Float)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    actual_failure_year: Mapped[int | None] = mapped_column(Integer)
    actual_condition_at_date: Mapped[float | None] = mapped_column(Float)
    actual_date: Mapped[date | None] = mapped_column(Date)
    prediction_accuracy: Mapped[float | None] = mapped_column(Float)


class OptimizationScenarioRecord(Base):
    __tablename__ = "optimization_scenarios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scenario_key: Mapped[str | None] = mapped_column(String(50), unique=True)
    project_id: Mapped[str | None] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    budget_constraint: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    budget_type: Mapped[str] = mapped_column(String(10), nullable=False)
    time_horizon: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    optimization_goal: Mapped[str] = mapped_column(String(20), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_benefit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    npv: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    roi: Mapped[Decimal | None] = mapped_column(Numeric(10, 4))
    payback_period: Mapped[int | None] = mapped_column(Integer)
    ci_before: Mapped[Decimal | None] = mapped_column(Numeric(7, 2))
    ci_after: Mapped[Decimal | None] = mapped_column(Numeric(7, 2))
    fci_before: Mapped[Decimal | None] = mapped_column(Numeric(9, 4))
    fci_after: Mapped[Decimal | None] = mapped_column(Numeric(9, 4))
    risk_before: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))
    risk_after: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))
    is_partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    optimized_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    strategies: Mapped[list["ScenarioStrategyRecord"]] = relationship(
        back_populates="scenario", cascade="all, delete-orphan"
    )
    cash_flows: Mapped[list["CashFlowProjectionRecord"]] = relationship(
        back_populates="scenario", cascade="all, delete-orphan"
    )


class ScenarioStrategyRecord(Base):
    __tablename__ = "scenario_strategies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scenario_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("optimization_scenarios.id"), nullable=False
    )
    strategy_key: Mapped[str] = mapped_column(String(50), nullable=False)
    component_code: Mapped[str] = mapped_column(String(20), nullable=False)
    asset_id: Mapped[str | None] = mapped_column(String(50))
    strategy: Mapped[str] = mapped_column(String(20), nullable=False)
    action_year: Mapped[int] = mapped_column(Integer, nullable=False)
    deferral_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    strategy_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    present_value_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    life_extension: Mapped[float | None] = mapped_column(Float)
    condition_improvement: Mapped[float | None] = mapped_column(Float)
    risk_reduction: Mapped[float | None] = mapped_column(Float)
    failure_cost_avoided: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    maintenance_savings: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    priority_score: Mapped[Decimal | None] = mapped_column(Numeric(14, 6))
    selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    over_budget: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skip_reason: Mapped[str | None] = mapped_column(String(30))

    scenario: Mapped["OptimizationScenarioRecord"] = relationship(
        back_populates="strategies"
    )


class CashFlowProjectionRecord(Base):
    __tablename__ = "cash_flow_projections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scenario_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("optimization_scenarios.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    capital_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    maintenance_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    operating_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    cost_avoidance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    efficiency_gains: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_cash_flow: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    cumulative_cash_flow: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False
    )
    projected_ci: Mapped[Decimal | None] = mapped_column(Numeric(7, 2))
    projected_fci: Mapped[Decimal | None] = mapped_column(Numeric(9, 4))

    scenario: Mapped["OptimizationScenarioRecord"] = relationship(
        back_populates="cash_flows"
    )
