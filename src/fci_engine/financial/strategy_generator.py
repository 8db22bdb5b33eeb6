import math
from decimal import Decimal

from fci_engine.config.settings import get_settings
from fci_engine.financial.npv import present_value, to_money
from fci_engine.models.enums import ConditionRating, OptimizationGoal, StrategyType
from fci_engine.models.schemas import Assessment, ScenarioStrategy, StrategyRecommendation

CONDITION_PERCENT = {
    ConditionRating.GOOD: 90.0,
    ConditionRating.FAIR: 65.0,
    ConditionRating.POOR: 30.0,
    ConditionRating.NOT_ASSESSED: 50.0,
}

DEFAULT_SERVICE_LIFE = 25.0
DEFER_YEARS = 3
DEFER_COST_SHARE = Decimal("0.10")
FAILURE_COST_MULTIPLIER = Decimal("1.5")

# Share of the unrecovered condition gap each strategy removes from risk
RISK_REDUCTION_SHARE = {
    StrategyType.REPLACE: 0.95,
    StrategyType.REHABILITATE: 0.7,
    StrategyType.DEFER: 0.1,
    StrategyType.DO_NOTHING: 0.0,
}

MAINTENANCE_SAVINGS_SHARE = {
    StrategyType.REPLACE: Decimal("0.5"),
    StrategyType.REHABILITATE: Decimal("0.3"),
}


def condition_percent(assessment: Assessment) -> float:
    if assessment.condition_percentage is not None:
        return assessment.condition_percentage
    return CONDITION_PERCENT[assessment.condition]


def estimated_replacement_cost(assessment: Assessment, condition: float) -> Decimal:
    """Replacement value, or a multiple of the repair estimate when none is recorded."""
    if assessment.replacement_value:
        return assessment.replacement_value
    repair = assessment.estimated_repair_cost or Decimal(0)
    return repair * (Decimal(2) if condition < 50 else Decimal("1.5"))


def rehabilitation_share(condition: float) -> Decimal:
    if condition > 60:
        return Decimal("0.4")
    if condition > 40:
        return Decimal("0.5")
    return Decimal("0.6")


def failure_probability(condition: float) -> Decimal:
    if condition < 30:
        return Decimal("0.8")
    if condition < 50:
        return Decimal("0.4")
    return Decimal("0.1")


def benefit_cost_ratio(strategy: ScenarioStrategy) -> float:
    """Dollar benefit per dollar spent, valuing each condition point at 100."""
    cost = strategy.strategy_cost or Decimal(0)
    if cost <= 0:
        return 0.0
    benefit = (
        (strategy.failure_cost_avoided or Decimal(0))
        + (strategy.maintenance_savings or Decimal(0))
        + Decimal(str(strategy.condition_improvement or 0.0)) * 100
    )
    return float(benefit / cost)


def generate_strategy_options(
    assessment: Assessment,
    start_year: int,
    time_horizon: int,
    discount_rate: float | None = None,
    consequence: float | None = None,
    component_name: str | None = None,
) -> list[ScenarioStrategy]:
    """Candidate replace / rehabilitate / defer / do-nothing actions for one assessment."""
    settings = get_settings()
    rate = settings.discount_rate if discount_rate is None else discount_rate
    maintenance_rate = Decimal(str(settings.annual_maintenance_rate))

    condition = condition_percent(assessment)
    replacement = estimated_replacement_cost(assessment, condition)
    service_life = assessment.expected_useful_life or DEFAULT_SERVICE_LIFE
    gap = 100.0 - condition
    p_failure = failure_probability(condition)
    open_repair = assessment.estimated_repair_cost if assessment.is_open else Decimal(0)
    key = assessment.id or f"{assessment.asset_id or 'asset'}-{assessment.component_code}"

    def _strategy(
        strategy: StrategyType,
        action_year: int,
        cost: Decimal,
        life_extension: float,
        improvement: float,
        failure_avoided: Decimal,
        maintenance_savings: Decimal,
    ) -> ScenarioStrategy:
        cost = to_money(cost)
        return ScenarioStrategy(
            id=f"{key}:{strategy.value}",
            component_code=assessment.component_code,
            component_name=component_name,
            asset_id=assessment.asset_id,
            strategy=strategy,
            action_year=action_year,
            strategy_cost=cost,
            present_value_cost=to_money(
                present_value(cost, rate, action_year - start_year)
            ),
            life_extension=life_extension,
            condition_improvement=round(improvement, 2),
            risk_reduction=round(gap * RISK_REDUCTION_SHARE[strategy], 2),
            failure_cost_avoided=to_money(failure_avoided),
            maintenance_savings=to_money(maintenance_savings),
            current_condition=condition,
            replacement_value=to_money(replacement),
            open_repair_cost=open_repair,
            consequence=consequence,
        )

    failure_avoided = FAILURE_COST_MULTIPLIER * replacement * p_failure
    annual_maintenance = replacement * maintenance_rate * time_horizon

    return [
        _strategy(
            StrategyType.REPLACE,
            start_year,
            replacement,
            service_life,
            gap,
            failure_avoided,
            annual_maintenance * MAINTENANCE_SAVINGS_SHARE[StrategyType.REPLACE],
        ),
        _strategy(
            StrategyType.REHABILITATE,
            start_year,
            replacement * rehabilitation_share(condition),
            float(math.floor(service_life * 0.6)),
            max(0.0, min(40.0, 85.0 - condition)),
            failure_avoided,
            annual_maintenance * MAINTENANCE_SAVINGS_SHARE[StrategyType.REHABILITATE],
        ),
        _strategy(
            StrategyType.DEFER,
            start_year + DEFER_YEARS,
            replacement * DEFER_COST_SHARE,
            0.0,
            0.0,
            failure_avoided,
            Decimal(0),
        ),
        _strategy(
            StrategyType.DO_NOTHING,
            start_year,
            Decimal(0),
            0.0,
            0.0,
            Decimal(0),
            Decimal(0),
        ),
    ]


def compare_strategies(
    strategies: list[ScenarioStrategy],
) -> dict[OptimizationGoal, StrategyRecommendation]:
    """Recommend one of a component's candidate strategies per optimization goal."""
    if not strategies:
        raise ValueError("No strategies to compare")

    component_code = strategies[0].component_code
    ordered = list(strategies)

    def pv(s: ScenarioStrategy) -> Decimal:
        return s.present_value_cost or s.strategy_cost or Decimal(0)

    picks = {
        OptimizationGoal.MINIMIZE_COST: min(ordered, key=pv),
        OptimizationGoal.MAXIMIZE_CI: max(
            ordered, key=lambda s: s.condition_improvement or 0.0
        ),
        OptimizationGoal.MAXIMIZE_ROI: max(ordered, key=benefit_cost_ratio),
        OptimizationGoal.MINIMIZE_RISK: max(ordered, key=lambda s: s.risk_reduction or 0.0),
    }
    return {
        goal: StrategyRecommendation(
            component_code=component_code,
            goal=goal,
            strategies=ordered,
            recommended=pick,
        )
        for goal, pick in picks.items()
    }
