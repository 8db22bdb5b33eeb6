import logging
from decimal import ROUND_HALF_UP, Decimal

import pandas as pd

from fci_engine.config.settings import Settings, get_settings
from fci_engine.errors import InvalidBudget, InvalidHorizon
from fci_engine.financial.npv import compute_npv, payback_period, present_value, to_money
from fci_engine.financial.scenario import ensure_optimizable, transition
from fci_engine.forecasting.condition_aggregator import ConditionAggregator, latest_assessments
from fci_engine.models.enums import (
    BudgetPeriod,
    BudgetType,
    ConditionRating,
    IssueKind,
    OptimizationGoal,
    ScenarioStatus,
    SkipReason,
    StrategyType,
)
from fci_engine.models.schemas import (
    REQUIRED_STRATEGY_FIELDS,
    Assessment,
    CashFlowProjection,
    EngineIssue,
    OptimizationResult,
    OptimizationScenario,
    OptimizationSummary,
    ScenarioStrategy,
    SelectionDecision,
)
from fci_engine.risk.scorer import RiskScorer

logger = logging.getLogger(__name__)

# (financial, condition, risk) weights of the priority composite
GOAL_WEIGHTS: dict[OptimizationGoal, tuple[Decimal, Decimal, Decimal]] = {
    OptimizationGoal.MAXIMIZE_ROI: (Decimal(1), Decimal("0.25"), Decimal("0.25")),
    OptimizationGoal.MAXIMIZE_CI: (Decimal("0.25"), Decimal(1), Decimal("0.25")),
    OptimizationGoal.MINIMIZE_RISK: (Decimal("0.25"), Decimal("0.25"), Decimal(1)),
    OptimizationGoal.MINIMIZE_COST: (Decimal(1), Decimal(0), Decimal(0)),
}

CAPITAL_STRATEGIES = (StrategyType.REPLACE, StrategyType.REHABILITATE)
DEFAULT_POINT_VALUE = Decimal(100)
DEFAULT_CONSEQUENCE = 0.5
PRIORITY_PLACES = Decimal("0.000001")


def _priority(value: Decimal) -> Decimal:
    return value.quantize(PRIORITY_PLACES, rounding=ROUND_HALF_UP)


def _rating_for(percent: float) -> ConditionRating:
    if percent >= 75:
        return ConditionRating.GOOD
    if percent >= 50:
        return ConditionRating.FAIR
    return ConditionRating.POOR


class _ComponentState:
    """Condition and cost state of one component while projecting a plan."""

    def __init__(
        self,
        asset_id: str | None,
        component_code: str,
        condition: float | None,
        replacement_value: Decimal,
        repair_cost: Decimal,
        consequence: float,
    ):
        self.asset_id = asset_id
        self.component_code = component_code
        self.condition = condition
        self.replacement_value = replacement_value
        self.repair_cost = repair_cost
        self.consequence = consequence

    def copy(self) -> "_ComponentState":
        return _ComponentState(
            self.asset_id,
            self.component_code,
            self.condition,
            self.replacement_value,
            self.repair_cost,
            self.consequence,
        )

    def apply(self, strategy: ScenarioStrategy) -> None:
        if self.condition is not None:
            self.condition = min(
                100.0, self.condition + (strategy.condition_improvement or 0.0)
            )
        if strategy.strategy in CAPITAL_STRATEGIES:
            self.repair_cost = Decimal(0)

    def as_assessment(self) -> Assessment:
        if self.condition is None:
            return Assessment(
                asset_id=self.asset_id,
                component_code=self.component_code,
                replacement_value=self.replacement_value,
                estimated_repair_cost=self.repair_cost,
            )
        return Assessment(
            asset_id=self.asset_id,
            component_code=self.component_code,
            condition=_rating_for(self.condition),
            condition_percentage=round(self.condition, 4),
            replacement_value=self.replacement_value,
            estimated_repair_cost=self.repair_cost,
        )


def _state_for(
    states: dict[tuple[str | None, str], _ComponentState], strategy: ScenarioStrategy
) -> _ComponentState | None:
    """Baseline state a strategy acts on; assessments without an asset match any asset."""
    return states.get((strategy.asset_id, strategy.component_code)) or states.get(
        (None, strategy.component_code)
    )


class CapitalPlanningOptimizer:
    """Budget-constrained multi-year selection of component strategies."""

    def __init__(
        self,
        settings: Settings | None = None,
        aggregator: ConditionAggregator | None = None,
        scorer: RiskScorer | None = None,
    ):
        self.settings = settings or get_settings()
        self.aggregator = aggregator or ConditionAggregator()
        self.scorer = scorer or RiskScorer()

    def validate_scenario(self, scenario: OptimizationScenario) -> None:
        """Raise before any work if the scenario cannot be optimized."""
        ensure_optimizable(scenario)
        if scenario.budget_constraint <= 0:
            raise InvalidBudget(
                f"Budget must be positive, got {scenario.budget_constraint}",
                field="budget_constraint",
                value=scenario.budget_constraint,
            )
        if scenario.time_horizon <= 0:
            raise InvalidHorizon(
                f"Time horizon must be positive, got {scenario.time_horizon}",
                field="time_horizon",
                value=scenario.time_horizon,
            )
        if scenario.time_horizon > self.settings.max_horizon_years:
            raise InvalidHorizon(
                f"Time horizon {scenario.time_horizon} exceeds the "
                f"{self.settings.max_horizon_years}-year cap",
                field="time_horizon",
                value=scenario.time_horizon,
            )

    def score_strategy(
        self, strategy: ScenarioStrategy, scenario: OptimizationScenario
    ) -> ScenarioStrategy:
        """Present-value cost and goal-weighted benefit/cost priority at the action year."""
        years_out = strategy.action_year - scenario.start_year
        pv = to_money(
            present_value(strategy.strategy_cost, scenario.discount_rate, years_out)
        )

        financial_w, condition_w, risk_w = GOAL_WEIGHTS[scenario.optimization_goal]
        point_value = (
            strategy.replacement_value / 100
            if strategy.replacement_value
            else DEFAULT_POINT_VALUE
        )
        composite = (
            financial_w * (strategy.failure_cost_avoided + strategy.maintenance_savings)
            + condition_w * Decimal(str(strategy.condition_improvement)) * point_value
            + risk_w * Decimal(str(strategy.risk_reduction)) * point_value
        )
        priority = _priority(composite / pv) if pv > 0 else _priority(composite)
        return strategy.model_copy(
            update={"present_value_cost": pv, "priority_score": priority}
        )

    def _defer(
        self,
        strategy: ScenarioStrategy,
        next_year: int,
        penalty: Decimal,
        scenario: OptimizationScenario,
    ) -> ScenarioStrategy:
        escalation = 1 + penalty
        deferred = strategy.model_copy(
            update={
                "action_year": next_year,
                "deferral_years": strategy.deferral_years + 1,
                "failure_cost_avoided": to_money(
                    strategy.failure_cost_avoided * escalation
                ),
                "maintenance_savings": to_money(strategy.maintenance_savings * escalation),
                "skip_reason": None,
            }
        )
        return self.score_strategy(deferred, scenario)

    def _year_budgets(self, scenario: OptimizationScenario) -> Decimal:
        if scenario.budget_period is BudgetPeriod.TOTAL:
            return scenario.budget_constraint / scenario.time_horizon
        return scenario.budget_constraint

    def optimize(
        self,
        scenario: OptimizationScenario,
        candidates: list[ScenarioStrategy],
        baseline_assessments: list[Assessment] | None = None,
    ) -> OptimizationResult:
        """Select strategies year by year and project the resulting cash flows.

        Args:
            scenario: A draft scenario carrying budget, horizon, rate and goal.
            candidates: Candidate strategies; at most one per component is selected.
            baseline_assessments: Current assessments used for before/after CI
                and FCI. When omitted, the condition and cost fields carried on
                the candidates are used instead.

        Raises:
            ScenarioStateError: scenario is not a draft.
            InvalidBudget: budget is not positive.
            InvalidHorizon: horizon is not positive or exceeds the cap.
        """
        self.validate_scenario(scenario)

        start = scenario.start_year
        end = start + scenario.time_horizon - 1
        penalty = Decimal(
            str(
                scenario.deferral_penalty_rate
                if scenario.deferral_penalty_rate is not None
                else self.settings.deferral_penalty_rate
            )
        )
        issues: list[EngineIssue] = []
        decisions: list[SelectionDecision] = []
        final: dict[int, ScenarioStrategy] = {}
        is_partial = False

        def decide(
            index: int,
            strategy: ScenarioStrategy,
            year: int,
            reason: SkipReason | None,
            over_budget: bool = False,
        ) -> None:
            selected = reason is None
            final[index] = strategy.model_copy(
                update={
                    "selected": selected,
                    "over_budget": over_budget,
                    "skip_reason": reason,
                }
            )
            decisions.append(
                SelectionDecision(
                    strategy_id=strategy.id,
                    component_code=strategy.component_code,
                    year=year,
                    selected=selected,
                    reason=reason,
                    over_budget=over_budget,
                )
            )
            logger.debug(
                "%s %s in %d: %s",
                strategy.id,
                "selected" if selected else "skipped",
                year,
                "over budget" if over_budget else (reason.value if reason else "ok"),
            )

        # Validation and horizon placement
        by_year: dict[int, list[tuple[int, ScenarioStrategy]]] = {}
        for index, candidate in enumerate(candidates):
            missing = [f for f in REQUIRED_STRATEGY_FIELDS if getattr(candidate, f) is None]
            if missing:
                is_partial = True
                message = f"Candidate {candidate.id} missing {', '.join(missing)}; excluded"
                issues.append(
                    EngineIssue(
                        kind=IssueKind.VALIDATION_WARNING,
                        message=message,
                        record_id=candidate.id,
                        field=missing[0],
                    )
                )
                logger.warning(message)
                decide(index, candidate, candidate.action_year, SkipReason.INVALID)
                continue

            if candidate.action_year < start:
                candidate = candidate.model_copy(update={"action_year": start})
            if candidate.action_year > end:
                decide(index, candidate, candidate.action_year, SkipReason.OUTSIDE_HORIZON)
                continue

            by_year.setdefault(candidate.action_year, []).append(
                (index, self.score_strategy(candidate, scenario))
            )

        # Greedy selection per year
        chosen_components: set[tuple[str | None, str]] = set()
        carried: list[tuple[int, ScenarioStrategy]] = []
        base_budget = self._year_budgets(scenario)
        rollover = Decimal(0)
        year_spend: dict[int, Decimal] = {}

        for year in range(start, end + 1):
            pool = by_year.get(year, []) + carried
            carried = []
            budget = base_budget + rollover
            pool.sort(
                key=lambda item: (
                    -item[1].priority_score,
                    item[1].present_value_cost,
                    item[1].id,
                )
            )

            cap = self.settings.max_candidates_per_year
            if len(pool) > cap:
                for index, strategy in pool[cap:]:
                    decide(index, strategy, year, SkipReason.CANDIDATE_CAP)
                pool = pool[:cap]

            spent = Decimal(0)
            soft_overrun_used = False
            for index, strategy in pool:
                component = (strategy.asset_id, strategy.component_code)
                if strategy.strategy is StrategyType.DO_NOTHING:
                    decide(index, strategy, year, SkipReason.NO_ACTION)
                    continue
                if component in chosen_components:
                    decide(index, strategy, year, SkipReason.ALTERNATIVE_SELECTED)
                    continue
                if (
                    scenario.optimization_goal is OptimizationGoal.MINIMIZE_COST
                    and strategy.priority_score < 1
                ):
                    decide(index, strategy, year, SkipReason.NOT_COST_EFFECTIVE)
                    continue

                cost = strategy.strategy_cost
                if spent + cost <= budget:
                    spent += cost
                    chosen_components.add(component)
                    decide(index, strategy, year, None)
                elif scenario.budget_type is BudgetType.SOFT and not soft_overrun_used:
                    spent += cost
                    soft_overrun_used = True
                    chosen_components.add(component)
                    decide(index, strategy, year, None, over_budget=True)
                elif year < end:
                    decide(index, strategy, year, SkipReason.OVER_BUDGET)
                    carried.append((index, self._defer(strategy, year + 1, penalty, scenario)))
                else:
                    decide(index, strategy, year, SkipReason.DEFERRED_BEYOND_HORIZON)

            year_spend[year] = spent
            if scenario.budget_period is BudgetPeriod.TOTAL:
                rollover = max(Decimal(0), budget - spent)

        strategies = [final[i] for i in sorted(final)]
        selected = [s for s in strategies if s.selected]

        cash_flows = self._project_cash_flows(
            scenario, selected, baseline_assessments, candidates
        )
        summary = self._summarize(
            scenario, strategies, selected, cash_flows, baseline_assessments, candidates, issues
        )

        logger.info(
            "Optimized scenario %s: %d selected, cost=%s, benefit=%s, NPV=%s%s",
            scenario.name,
            summary.selected_count,
            summary.total_cost,
            summary.total_benefit,
            summary.npv,
            " (partial)" if is_partial else "",
        )
        return OptimizationResult(
            scenario=transition(scenario, ScenarioStatus.OPTIMIZED),
            strategies=strategies,
            decisions=decisions,
            cash_flows=cash_flows,
            summary=summary,
            issues=issues,
            is_partial=is_partial,
        )

    def _baseline(
        self,
        baseline_assessments: list[Assessment] | None,
        candidates: list[ScenarioStrategy],
    ) -> dict[tuple[str | None, str], _ComponentState]:
        states: dict[tuple[str | None, str], _ComponentState] = {}
        consequences: dict[tuple[str | None, str], float] = {}
        for candidate in candidates:
            key = (candidate.asset_id, candidate.component_code)
            if candidate.consequence is not None:
                consequences.setdefault(key, candidate.consequence)

        if baseline_assessments is not None:
            for assessment in latest_assessments(baseline_assessments):
                key = (assessment.asset_id, assessment.component_code)
                if assessment.condition == ConditionRating.NOT_ASSESSED:
                    condition = None
                else:
                    score = self.aggregator.condition_score(assessment)
                    condition = float(score) if score is not None else None
                states[key] = _ComponentState(
                    assessment.asset_id,
                    assessment.component_code,
                    condition,
                    assessment.replacement_value or Decimal(0),
                    (assessment.estimated_repair_cost or Decimal(0))
                    if assessment.is_open
                    else Decimal(0),
                    consequences.get(key, DEFAULT_CONSEQUENCE),
                )
            return states

        for candidate in candidates:
            key = (candidate.asset_id, candidate.component_code)
            if key in states:
                continue
            states[key] = _ComponentState(
                candidate.asset_id,
                candidate.component_code,
                candidate.current_condition,
                candidate.replacement_value or Decimal(0),
                candidate.open_repair_cost or Decimal(0),
                consequences.get(key, DEFAULT_CONSEQUENCE),
            )
        return states

    def _condition_indices(
        self, states: dict[tuple[str | None, str], _ComponentState]
    ) -> tuple[Decimal | None, Decimal | None]:
        if not states:
            return None, None
        snapshot = self.aggregator.aggregate([s.as_assessment() for s in states.values()])
        return snapshot.ci, snapshot.fci

    def _portfolio_risk(
        self, states: dict[tuple[str | None, str], _ComponentState]
    ) -> float | None:
        # sorted so the mean does not depend on candidate order
        scores = sorted(
            self.scorer.score_values(1 - s.condition / 100, s.consequence).risk_score
            for s in states.values()
            if s.condition is not None
        )
        if not scores:
            return None
        return round(sum(scores) / len(scores), 4)

    def _project_cash_flows(
        self,
        scenario: OptimizationScenario,
        selected: list[ScenarioStrategy],
        baseline_assessments: list[Assessment] | None,
        candidates: list[ScenarioStrategy],
    ) -> list[CashFlowProjection]:
        start = scenario.start_year
        end = start + scenario.time_horizon - 1
        loss = self.settings.annual_condition_loss
        states = self._baseline(baseline_assessments, candidates)

        projections = []
        cumulative = Decimal(0)
        for year in range(start, end + 1):
            if year > start:
                for state in states.values():
                    if state.condition is not None:
                        state.condition = max(0.0, state.condition - loss)

            capital = maintenance = operating = avoidance = efficiency = Decimal(0)
            for strategy in selected:
                if strategy.action_year == year:
                    if strategy.strategy in CAPITAL_STRATEGIES:
                        capital += strategy.strategy_cost
                    else:
                        maintenance += strategy.strategy_cost
                    avoidance += strategy.failure_cost_avoided
                    state = _state_for(states, strategy)
                    if state is not None:
                        state.apply(strategy)
                if strategy.action_year <= year:
                    operating += strategy.annual_operating_cost
                    remaining_years = end - strategy.action_year + 1
                    efficiency += strategy.maintenance_savings / remaining_years

            net = avoidance + efficiency - capital - maintenance - operating
            cumulative += net
            ci, fci = self._condition_indices(states)
            projections.append(
                CashFlowProjection(
                    year=year,
                    capital_cost=to_money(capital),
                    maintenance_cost=to_money(maintenance),
                    operating_cost=to_money(operating),
                    cost_avoidance=to_money(avoidance),
                    efficiency_gains=to_money(efficiency),
                    net_cash_flow=to_money(net),
                    cumulative_cash_flow=to_money(cumulative),
                    projected_ci=ci,
                    projected_fci=fci,
                )
            )
        return projections

    def _summarize(
        self,
        scenario: OptimizationScenario,
        strategies: list[ScenarioStrategy],
        selected: list[ScenarioStrategy],
        cash_flows: list[CashFlowProjection],
        baseline_assessments: list[Assessment] | None,
        candidates: list[ScenarioStrategy],
        issues: list[EngineIssue],
    ) -> OptimizationSummary:
        total_cost = to_money(sum((s.strategy_cost for s in selected), Decimal(0)))
        total_benefit = to_money(
            sum(
                (s.failure_cost_avoided + s.maintenance_savings for s in selected),
                Decimal(0),
            )
        )

        if total_cost > 0:
            roi = (total_benefit / total_cost).quantize(
                Decimal("0.0001"), rounding=ROUND_HALF_UP
            )
        else:
            roi = None
            issues.append(
                EngineIssue(
                    kind=IssueKind.UNDEFINED_RATIO,
                    message="No spend selected; ROI is undefined",
                    record_id=scenario.id,
                    field="roi",
                )
            )

        before = self._baseline(baseline_assessments, candidates)
        after = {key: state.copy() for key, state in before.items()}
        for strategy in sorted(selected, key=lambda s: s.action_year):
            state = _state_for(after, strategy)
            if state is not None:
                state.apply(strategy)

        ci_before, fci_before = self._condition_indices(before)
        ci_after, fci_after = self._condition_indices(after)

        return OptimizationSummary(
            total_cost=total_cost,
            total_benefit=total_benefit,
            npv=compute_npv([cf.net_cash_flow for cf in cash_flows], scenario.discount_rate),
            roi=roi,
            payback_period=payback_period([cf.cumulative_cash_flow for cf in cash_flows]),
            ci_before=ci_before,
            ci_after=ci_after,
            fci_before=fci_before,
            fci_after=fci_after,
            risk_before=self._portfolio_risk(before),
            risk_after=self._portfolio_risk(after),
            selected_count=len(selected),
            deferred_count=sum(
                1
                for s in strategies
                if s.deferral_years > 0
                or s.skip_reason is SkipReason.DEFERRED_BEYOND_HORIZON
            ),
            over_budget_count=sum(1 for s in selected if s.over_budget),
        )


def optimize(
    candidate_strategies: list[ScenarioStrategy],
    budget_constraint: Decimal,
    budget_type: BudgetType,
    time_horizon: int,
    discount_rate: float,
    goal: OptimizationGoal,
    start_year: int,
    name: str = "scenario",
) -> OptimizationResult:
    scenario = OptimizationScenario(
        name=name,
        budget_constraint=Decimal(str(budget_constraint)),
        budget_type=budget_type,
        time_horizon=time_horizon,
        discount_rate=discount_rate,
        optimization_goal=goal,
        start_year=start_year,
    )
    return CapitalPlanningOptimizer().optimize(scenario, candidate_strategies)


def cash_flow_frame(result: OptimizationResult) -> pd.DataFrame:
    """Cash-flow projections as a year-indexed DataFrame."""
    if not result.cash_flows:
        return pd.DataFrame()

    data = []
    for cf in result.cash_flows:
        data.append(
            {
                "year": cf.year,
                "capital_cost": float(cf.capital_cost),
                "maintenance_cost": float(cf.maintenance_cost),
                "operating_cost": float(cf.operating_cost),
                "cost_avoidance": float(cf.cost_avoidance),
                "efficiency_gains": float(cf.efficiency_gains),
                "net_cash_flow": float(cf.net_cash_flow),
                "cumulative_cash_flow": float(cf.cumulative_cash_flow),
                "projected_ci": float(cf.projected_ci) if cf.projected_ci is not None else None,
                "projected_fci": float(cf.projected_fci) if cf.projected_fci is not None else None,
            }
        )
    return pd.DataFrame(data).set_index("year")
