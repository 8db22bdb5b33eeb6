from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator

from fci_engine.models.enums import (
    AggregationLevel,
    BudgetPeriod,
    BudgetType,
    CombinationRule,
    ConditionRating,
    CurveType,
    DefectSeverity,
    IssueKind,
    MaintenanceFrequency,
    OperatingEnvironment,
    OptimizationGoal,
    PredictionMethod,
    RiskLevel,
    ScenarioStatus,
    SkipReason,
    StrategyType,
)


class EngineIssue(BaseModel):
    """Non-fatal condition attached to a result instead of aborting it."""

    kind: IssueKind
    message: str
    record_id: str | None = None
    field: str | None = None


# --- Classification and assessment inputs ---


class Component(BaseModel):
    code: str
    name: str
    level: int = Field(ge=1, le=4)
    parent_code: str | None = None
    is_custom: bool = False


class Assessment(BaseModel):
    """One observation of a component's condition, as supplied by the host store."""

    id: str | None = None
    project_id: str | None = None
    asset_id: str | None = None
    component_code: str
    condition: ConditionRating = ConditionRating.NOT_ASSESSED
    condition_percentage: float | None = Field(None, ge=0, le=100)
    remaining_useful_life: float | None = Field(None, ge=0)
    expected_useful_life: float | None = Field(None, gt=0)
    estimated_repair_cost: Decimal | None = Field(None, ge=0)
    replacement_value: Decimal | None = Field(None, ge=0)
    install_year: int | None = None
    is_open: bool = True
    assessed_at: date | None = None
    version: int = Field(1, ge=1)


class RatingScale(BaseModel):
    """CI scale. Condition scores are percentages, mapped onto [min_value, max_value]."""

    name: str = "percent"
    min_value: float = 0.0
    max_value: float = 100.0
    condition_scores: dict[ConditionRating, float] = {
        ConditionRating.GOOD: 90.0,
        ConditionRating.FAIR: 65.0,
        ConditionRating.POOR: 30.0,
    }

    @model_validator(mode="after")
    def _check_bounds(self) -> "RatingScale":
        if self.max_value <= self.min_value:
            raise ValueError("max_value must be greater than min_value")
        return self

    def to_scale(self, percent: Decimal) -> Decimal:
        span = Decimal(str(self.max_value)) - Decimal(str(self.min_value))
        return Decimal(str(self.min_value)) + percent * span / Decimal(100)


class RiskBands(BaseModel):
    """Upper bounds (exclusive) of the first four risk levels; above ``high`` is critical."""

    very_low: float = 0.10
    low: float = 0.20
    medium: float = 0.30
    high: float = 0.40

    @model_validator(mode="after")
    def _check_ascending(self) -> "RiskBands":
        bounds = [self.very_low, self.low, self.medium, self.high]
        if any(b <= a for a, b in zip(bounds, bounds[1:])) or not 0 < bounds[0]:
            raise ValueError("risk band thresholds must be positive and ascending")
        if bounds[-1] > 1:
            raise ValueError("risk band thresholds must lie within [0, 1]")
        return self


# --- Deterioration curves ---


class LinearShape(BaseModel):
    """Piecewise-linear through condition points spread evenly over the service life."""

    mode: Literal["linear"] = "linear"
    points: list[float] = Field(min_length=2, max_length=6)


class PolynomialShape(BaseModel):
    """Coefficients c0..c5 of a polynomial in normalized age (age / service life)."""

    mode: Literal["polynomial"] = "polynomial"
    coefficients: list[float] = Field(min_length=1, max_length=6)


class ExponentialShape(BaseModel):
    """Exponential decay from ``initial`` to ``terminal`` across the service life."""

    mode: Literal["exponential"] = "exponential"
    initial: float
    terminal: float
    rate: float = Field(gt=0)


CurveShape = Annotated[
    LinearShape | PolynomialShape | ExponentialShape, Field(discriminator="mode")
]


class DeteriorationCurve(BaseModel):
    id: str | None = None
    name: str
    curve_type: CurveType = CurveType.DESIGN
    service_life: float = Field(gt=0)
    min_condition: float = 0.0
    max_condition: float = 100.0
    shape: CurveShape

    @model_validator(mode="after")
    def _check_monotonic(self) -> "DeteriorationCurve":
        from fci_engine.forecasting.deterioration import validate_curve

        validate_curve(self)
        return self


class ComponentDeteriorationConfig(BaseModel):
    project_id: str | None = None
    component_code: str
    best: DeteriorationCurve | None = None
    design: DeteriorationCurve | None = None
    worst: DeteriorationCurve | None = None
    active: CurveType = CurveType.DESIGN

    def curve_for(self, curve_type: CurveType) -> DeteriorationCurve | None:
        match curve_type:
            case CurveType.BEST:
                return self.best
            case CurveType.DESIGN:
                return self.design
            case CurveType.WORST:
                return self.worst

    @property
    def active_curve(self) -> DeteriorationCurve | None:
        return self.curve_for(self.active)


class CurveEvaluation(BaseModel):
    curve_name: str
    curve_type: CurveType
    age_years: float
    condition: float
    remaining_life: float


# --- Risk ---


class PoFFactors(BaseModel):
    age: float | None = Field(None, ge=0)
    expected_useful_life: float | None = Field(None, gt=0)
    remaining_life_percent: float | None = None
    condition_index: float | None = None
    defect_severity: DefectSeverity | None = None
    maintenance_frequency: MaintenanceFrequency | None = None
    deferred_maintenance_years: float | None = None
    operating_environment: OperatingEnvironment | None = None
    utilization_rate: float | None = None
    equipment_type: str | None = None


class CoFFactors(BaseModel):
    safety: float | None = None
    operational: float | None = None
    financial: float | None = None
    environmental: float | None = None
    reputational: float | None = None

    safety_notes: str | None = None
    operational_notes: str | None = None
    financial_notes: str | None = None
    environmental_notes: str | None = None
    reputational_notes: str | None = None


POF_FACTOR_NAMES = ("age", "remaining_life", "condition", "maintenance", "environment")
COF_DIMENSION_NAMES = (
    "safety",
    "operational",
    "financial",
    "environmental",
    "reputational",
)


class RiskWeights(BaseModel):
    pof: dict[str, float] = {name: 1.0 for name in POF_FACTOR_NAMES}
    cof: dict[str, float] = {
        "safety": 0.40,
        "operational": 0.20,
        "financial": 0.20,
        "environmental": 0.10,
        "reputational": 0.10,
    }
    rule: CombinationRule = CombinationRule.PRODUCT
    pof_share: float = Field(0.5, ge=0, le=1)

    @model_validator(mode="after")
    def _check_weights(self) -> "RiskWeights":
        for side, names in (("pof", POF_FACTOR_NAMES), ("cof", COF_DIMENSION_NAMES)):
            weights = getattr(self, side)
            unknown = set(weights) - set(names)
            if unknown:
                raise ValueError(f"unknown {side} weight(s): {sorted(unknown)}")
            if any(w < 0 for w in weights.values()):
                raise ValueError(f"{side} weights must be non-negative")
        return self


class RiskScore(BaseModel):
    """PoF, CoF and their combination. Score and level are None when either side is unknown."""

    pof: float | None
    cof: float | None
    risk_score: float | None
    risk_level: RiskLevel | None
    rule: CombinationRule
    pof_factors: dict[str, float]
    cof_dimensions: dict[str, float]
    notes: dict[str, str] = {}
    issues: list[EngineIssue] = []


# --- Condition snapshots ---


class ConditionSnapshot(BaseModel):
    project_id: str | None = None
    level: AggregationLevel
    entity_id: str | None = None
    ci: Decimal | None
    fci: Decimal | None  # percent; None when replacement value is zero
    deferred_maintenance_cost: Decimal
    current_replacement_value: Decimal
    assessed_count: int
    excluded_count: int
    calculated_at: datetime
    calculation_method: str
    issues: list[EngineIssue] = []

    @property
    def fci_defined(self) -> bool:
        return self.fci is not None


# --- Predictions ---


class HistoricalCondition(BaseModel):
    assessed_at: date
    condition: float = Field(ge=0, le=100)


class ComponentContext(BaseModel):
    component_code: str
    project_id: str | None = None
    install_year: int
    expected_useful_life: float | None = Field(None, gt=0)


class PredictionHistoryEntry(BaseModel):
    project_id: str | None = None
    component_code: str
    predicted_at: datetime
    method: PredictionMethod
    curve_used: CurveType | None = None
    model_version: str
    predicted_failure_year: int | None = None
    predicted_remaining_life: float | None = None
    predicted_condition: float | None = None
    confidence_score: float
    actual_failure_year: int | None = None
    actual_condition_at_date: float | None = None
    actual_date: date | None = None
    prediction_accuracy: float | None = None


class ConditionPrediction(BaseModel):
    component_code: str
    method: PredictionMethod
    predicted_failure_year: int | None = None
    predicted_remaining_life: float | None = None
    predicted_condition: float | None = None
    confidence_score: float
    curve_used: CurveType | None = None
    deterioration_rate: float | None = None
    issues: list[EngineIssue] = []
    history: PredictionHistoryEntry


# --- Capital planning ---


REQUIRED_STRATEGY_FIELDS = (
    "strategy_cost",
    "condition_improvement",
    "risk_reduction",
    "failure_cost_avoided",
    "maintenance_savings",
)


class ScenarioStrategy(BaseModel):
    """One candidate action for one component."""

    id: str
    component_code: str
    component_name: str | None = None
    asset_id: str | None = None
    strategy: StrategyType
    action_year: int
    deferral_years: int = 0
    strategy_cost: Decimal | None = Field(None, ge=0)
    present_value_cost: Decimal | None = None
    life_extension: float = 0.0
    condition_improvement: float | None = None
    risk_reduction: float | None = None
    failure_cost_avoided: Decimal | None = None
    maintenance_savings: Decimal | None = None
    annual_operating_cost: Decimal = Decimal("0")
    current_condition: float | None = Field(None, ge=0, le=100)
    replacement_value: Decimal | None = None
    open_repair_cost: Decimal | None = None
    consequence: float | None = Field(None, ge=0, le=1)
    priority_score: Decimal | None = None
    selected: bool = False
    over_budget: bool = False
    skip_reason: SkipReason | None = None


class OptimizationScenario(BaseModel):
    id: str | None = None
    project_id: str | None = None
    name: str
    budget_constraint: Decimal
    budget_type: BudgetType = BudgetType.HARD
    budget_period: BudgetPeriod = BudgetPeriod.ANNUAL
    time_horizon: int
    discount_rate: float = Field(0.03, ge=0, lt=1)
    optimization_goal: OptimizationGoal = OptimizationGoal.MAXIMIZE_ROI
    start_year: int
    status: ScenarioStatus = ScenarioStatus.DRAFT
    deferral_penalty_rate: float | None = Field(None, ge=0)


class SelectionDecision(BaseModel):
    strategy_id: str
    component_code: str
    year: int
    selected: bool
    reason: SkipReason | None = None
    over_budget: bool = False


class CashFlowProjection(BaseModel):
    year: int
    capital_cost: Decimal
    maintenance_cost: Decimal
    operating_cost: Decimal
    cost_avoidance: Decimal
    efficiency_gains: Decimal
    net_cash_flow: Decimal
    cumulative_cash_flow: Decimal
    projected_ci: Decimal | None
    projected_fci: Decimal | None


class OptimizationSummary(BaseModel):
    total_cost: Decimal
    total_benefit: Decimal
    npv: Decimal
    roi: Decimal | None
    payback_period: int | None
    ci_before: Decimal | None
    ci_after: Decimal | None
    fci_before: Decimal | None
    fci_after: Decimal | None
    risk_before: float | None
    risk_after: float | None
    selected_count: int
    deferred_count: int
    over_budget_count: int


class OptimizationResult(BaseModel):
    scenario: OptimizationScenario
    strategies: list[ScenarioStrategy]
    decisions: list[SelectionDecision]
    cash_flows: list[CashFlowProjection]
    summary: OptimizationSummary
    issues: list[EngineIssue] = []
    is_partial: bool = False

    @property
    def selected_strategies(self) -> list[ScenarioStrategy]:
        return [s for s in self.strategies if s.selected]


class StrategyRecommendation(BaseModel):
    component_code: str
    goal: OptimizationGoal
    strategies: list[ScenarioStrategy]
    recommended: ScenarioStrategy


class MaintenanceEntry(BaseModel):
    """Completed work fed back to the host application once a scenario is implemented."""

    scenario_id: str | None
    source_strategy_id: str
    component_code: str
    asset_id: str | None
    strategy: StrategyType
    year: int
    cost: Decimal
    condition_improvement: float
    life_extension: float


# --- Portfolio selection ---


class PortfolioProject(BaseModel):
    """One building or project competing for whole-portfolio funding."""

    project_id: str
    name: str | None = None
    current_ci: float = Field(ge=0, le=100)
    current_fci: float | None = Field(None, ge=0)  # percent
    replacement_value: Decimal = Field(gt=0)
    deferred_maintenance_cost: Decimal = Field(ge=0)
    priority_score: float = 0.0
    estimated_cost: Decimal | None = Field(None, ge=0)
    expected_ci_improvement: float | None = Field(None, ge=0)
    expected_fci_improvement: float | None = Field(None, ge=0)


class PortfolioConstraints(BaseModel):
    max_budget: Decimal
    min_projects: int | None = Field(None, ge=0)
    max_projects: int | None = Field(None, ge=0)
    required_project_ids: list[str] = []
    excluded_project_ids: list[str] = []


class PortfolioSelection(BaseModel):
    project_id: str
    name: str | None
    cost: Decimal
    ci_improvement: float
    fci_improvement: float
    priority_score: float
    cost_per_ci_point: Decimal | None  # None when the project adds no CI


class PortfolioOptimizationResult(BaseModel):
    selected: list[PortfolioSelection]
    total_cost: Decimal
    total_ci_improvement: float  # portfolio CI points, replacement-value weighted
    total_fci_improvement: float
    ci_before: float
    ci_after: float
    fci_before: float
    fci_after: float
    ci_improvement_percent: float
    fci_improvement_percent: float
    budget_utilization: float
    cost_per_ci_point: Decimal | None


class SensitivityPoint(BaseModel):
    budget: Decimal
    project_count: int
    total_cost: Decimal
    ci_improvement: float
    fci_improvement: float
    marginal_benefit: float
    ci_per_million: float


class SensitivityAnalysis(BaseModel):
    results: list[SensitivityPoint]
    optimal_budget: Decimal
    inflection_point: Decimal

    @property
    def budget_levels(self) -> list[Decimal]:
        return [r.budget for r in self.results]


class ParetoPoint(BaseModel):
    cost: Decimal
    ci_improvement: float
    fci_improvement: float
    project_count: int
    project_ids: list[str]


class RankedProject(BaseModel):
    rank: int
    project_id: str
    name: str | None
    cost: Decimal
    ci_improvement: float
    fci_improvement: float
    priority_score: float
    cost_per_ci_point: Decimal | None
    cost_per_fci_point: Decimal | None
