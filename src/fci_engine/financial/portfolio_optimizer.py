import logging
from decimal import Decimal

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from fci_engine.config.settings import Settings, get_settings
from fci_engine.errors import InfeasiblePortfolio, InvalidBudget
from fci_engine.financial.npv import to_money
from fci_engine.models.schemas import (
    ConditionSnapshot,
    ParetoPoint,
    PortfolioConstraints,
    PortfolioOptimizationResult,
    PortfolioProject,
    PortfolioSelection,
    RankedProject,
    SensitivityAnalysis,
    SensitivityPoint,
)

logger = logging.getLogger(__name__)

# A budget step is the inflection point once its marginal CI gain falls below
# this share of the previous step's.
INFLECTION_RATIO = 0.5


class _Estimate:
    """Cost and expected improvement of funding one project."""

    def __init__(
        self, project: PortfolioProject, cost: Decimal, ci_gain: float, fci_gain: float
    ):
        self.project = project
        self.cost = cost
        self.ci_gain = ci_gain
        self.fci_gain = fci_gain


def _per_point(cost: Decimal, gain: float) -> Decimal | None:
    if gain <= 0:
        return None
    return to_money(cost / Decimal(str(gain)))


def projects_from_snapshots(
    snapshots: list[ConditionSnapshot],
    priority_scores: dict[str, float] | None = None,
) -> list[PortfolioProject]:
    """Building snapshots that carry deferred work, as portfolio projects."""
    priority_scores = priority_scores or {}
    projects = []
    for snapshot in snapshots:
        key = snapshot.entity_id or snapshot.project_id
        if (
            key is None
            or snapshot.ci is None
            or snapshot.current_replacement_value <= 0
            or snapshot.deferred_maintenance_cost <= 0
        ):
            logger.debug("Snapshot %s has nothing to fund; skipped", key)
            continue
        projects.append(
            PortfolioProject(
                project_id=key,
                current_ci=float(snapshot.ci),
                current_fci=float(snapshot.fci) if snapshot.fci is not None else None,
                replacement_value=snapshot.current_replacement_value,
                deferred_maintenance_cost=snapshot.deferred_maintenance_cost,
                priority_score=priority_scores.get(key, 0.0),
            )
        )
    return projects


class PortfolioOptimizer:
    """Exact 0/1 project selection across a portfolio under one budget."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.ci_places = self.settings.ci_decimal_places
        self.fci_places = self.settings.fci_decimal_places

    @staticmethod
    def current_fci(project: PortfolioProject) -> float:
        if project.current_fci is not None:
            return project.current_fci
        return float(project.deferred_maintenance_cost / project.replacement_value * 100)

    def estimate(self, project: PortfolioProject) -> _Estimate:
        """Funding a project clears its deferred work unless explicit figures are given.

        Cost defaults to the deferred maintenance cost, CI rises to the
        configured target, and FCI falls to the residual share of deferred cost.
        """
        cost = (
            project.estimated_cost
            if project.estimated_cost is not None
            else project.deferred_maintenance_cost
        )
        if project.expected_ci_improvement is not None:
            ci_gain = project.expected_ci_improvement
        else:
            ci_gain = max(0.0, self.settings.portfolio_target_ci - project.current_ci)
        if project.expected_fci_improvement is not None:
            fci_gain = project.expected_fci_improvement
        else:
            residual = (
                self.settings.portfolio_residual_fci_share
                * float(project.deferred_maintenance_cost / project.replacement_value)
                * 100
            )
            fci_gain = max(0.0, self.current_fci(project) - residual)
        return _Estimate(project, cost, ci_gain, fci_gain)

    def _estimates(self, projects: list[PortfolioProject]) -> tuple[list[_Estimate], float]:
        ordered = sorted(projects, key=lambda p: p.project_id)
        total_value = float(sum((p.replacement_value for p in ordered), Decimal(0)))
        return [self.estimate(p) for p in ordered], total_value

    def optimize(
        self, projects: list[PortfolioProject], constraints: PortfolioConstraints
    ) -> PortfolioOptimizationResult:
        """Select the projects that maximize the portfolio CI gain within budget.

        Each project's CI gain is weighted by its share of the portfolio
        replacement value, so the objective is the rise in portfolio CI.

        Raises:
            InvalidBudget: budget is not positive.
            InfeasiblePortfolio: no projects, conflicting or unknown required
                projects, or no selection meets the count and budget limits.
        """
        budget = constraints.max_budget
        if budget <= 0:
            raise InvalidBudget(
                f"Budget must be positive, got {budget}", field="max_budget", value=budget
            )
        if not projects:
            raise InfeasiblePortfolio("No projects available for optimization")

        required = set(constraints.required_project_ids)
        excluded = set(constraints.excluded_project_ids)
        known = {p.project_id for p in projects}
        if required - known:
            raise InfeasiblePortfolio(
                f"Required projects not in portfolio: {sorted(required - known)}",
                field="required_project_ids",
                value=sorted(required - known),
            )
        if required & excluded:
            raise InfeasiblePortfolio(
                f"Projects both required and excluded: {sorted(required & excluded)}",
                field="excluded_project_ids",
                value=sorted(required & excluded),
            )

        estimates, total_value = self._estimates(projects)
        n = len(estimates)
        costs = np.array([float(e.cost) for e in estimates])
        weights = [float(e.project.replacement_value) / total_value for e in estimates]
        ci_gains = np.array([e.ci_gain * w for e, w in zip(estimates, weights)])

        lower = np.array([1.0 if e.project.project_id in required else 0.0 for e in estimates])
        upper = np.array([0.0 if e.project.project_id in excluded else 1.0 for e in estimates])
        limits = [LinearConstraint(costs.reshape(1, -1), -np.inf, float(budget))]
        if constraints.min_projects is not None or constraints.max_projects is not None:
            limits.append(
                LinearConstraint(
                    np.ones((1, n)),
                    constraints.min_projects or 0,
                    constraints.max_projects if constraints.max_projects is not None else n,
                )
            )

        solution = milp(
            -ci_gains,
            constraints=limits,
            integrality=np.ones(n),
            bounds=Bounds(lower, upper),
        )
        if not solution.success:
            raise InfeasiblePortfolio(
                f"No feasible selection within budget {budget}: {solution.message}",
                field="max_budget",
                value=budget,
            )
        chosen = np.round(solution.x).astype(bool)

        selected = []
        total_cost = Decimal(0)
        ci_total = fci_total = 0.0
        for estimate, weight, take in zip(estimates, weights, chosen):
            if not take:
                continue
            project = estimate.project
            selected.append(
                PortfolioSelection(
                    project_id=project.project_id,
                    name=project.name,
                    cost=to_money(estimate.cost),
                    ci_improvement=round(estimate.ci_gain, self.ci_places),
                    fci_improvement=round(estimate.fci_gain, self.fci_places),
                    priority_score=project.priority_score,
                    cost_per_ci_point=_per_point(estimate.cost, estimate.ci_gain),
                )
            )
            total_cost += estimate.cost
            ci_total += estimate.ci_gain * weight
            fci_total += estimate.fci_gain * weight

        ci_before = sum(e.project.current_ci * w for e, w in zip(estimates, weights))
        fci_before = sum(self.current_fci(e.project) * w for e, w in zip(estimates, weights))
        ci_after = ci_before + ci_total
        fci_after = fci_before - fci_total

        result = PortfolioOptimizationResult(
            selected=selected,
            total_cost=to_money(total_cost),
            total_ci_improvement=round(ci_total, self.ci_places),
            total_fci_improvement=round(fci_total, self.fci_places),
            ci_before=round(ci_before, self.ci_places),
            ci_after=round(ci_after, self.ci_places),
            fci_before=round(fci_before, self.fci_places),
            fci_after=round(fci_after, self.fci_places),
            ci_improvement_percent=round(ci_total / ci_before * 100, 2) if ci_before > 0 else 0.0,
            fci_improvement_percent=(
                round(fci_total / fci_before * 100, 2) if fci_before > 0 else 0.0
            ),
            budget_utilization=round(float(total_cost / budget * 100), 2),
            cost_per_ci_point=_per_point(total_cost, ci_total),
        )
        logger.info(
            "Portfolio selection: %d of %d projects, cost=%s, CI %.2f -> %.2f",
            len(selected),
            n,
            result.total_cost,
            result.ci_before,
            result.ci_after,
        )
        return result

    def analyze_sensitivity(
        self,
        projects: list[PortfolioProject],
        base_budget: Decimal,
        range_percent: float = 50.0,
        steps: int = 10,
    ) -> SensitivityAnalysis:
        """Re-run the selection across budgets within ``range_percent`` of the base.

        Budgets with no feasible selection are left out. The optimal budget
        yields the most CI per dollar; the inflection point is the first budget
        whose marginal CI gain drops below half of the previous step's.
        """
        base = Decimal(str(base_budget))
        if base <= 0:
            raise InvalidBudget(
                f"Budget must be positive, got {base}", field="base_budget", value=base
            )
        spread = Decimal(str(range_percent)) / 100
        low = base * (1 - spread)
        step = (base * (1 + spread) - low) / steps

        results: list[SensitivityPoint] = []
        previous = 0.0
        for i in range(steps + 1):
            budget = to_money(low + step * i)
            try:
                outcome = self.optimize(projects, PortfolioConstraints(max_budget=budget))
            except (InvalidBudget, InfeasiblePortfolio) as exc:
                logger.debug("Budget %s skipped: %s", budget, exc)
                continue
            gain = outcome.total_ci_improvement
            results.append(
                SensitivityPoint(
                    budget=budget,
                    project_count=len(outcome.selected),
                    total_cost=outcome.total_cost,
                    ci_improvement=gain,
                    fci_improvement=outcome.total_fci_improvement,
                    marginal_benefit=round(gain - previous, self.ci_places),
                    ci_per_million=round(gain / float(budget) * 1_000_000, 4),
                )
            )
            previous = gain

        optimal = base
        best = None
        for point in results:
            if best is None or point.ci_per_million > best:
                best = point.ci_per_million
                optimal = point.budget

        inflection = base
        for before, point in zip(results, results[1:]):
            if point.marginal_benefit < before.marginal_benefit * INFLECTION_RATIO:
                inflection = point.budget
                break

        return SensitivityAnalysis(
            results=results, optimal_budget=optimal, inflection_point=inflection
        )

    def pareto_frontier(self, projects: list[PortfolioProject]) -> list[ParetoPoint]:
        """Cumulative cost and portfolio CI/FCI gain, adding projects best value first."""
        if not projects:
            return []
        estimates, total_value = self._estimates(projects)

        def value_per_dollar(estimate: _Estimate) -> float:
            gain = estimate.ci_gain * float(estimate.project.replacement_value) / total_value
            if estimate.cost > 0:
                return gain / float(estimate.cost)
            return float("inf") if gain > 0 else 0.0

        ranked = sorted(estimates, key=lambda e: (-value_per_dollar(e), e.project.project_id))

        points = []
        cost = Decimal(0)
        ci_gain = fci_gain = 0.0
        chosen: list[str] = []
        for estimate in ranked:
            share = float(estimate.project.replacement_value) / total_value
            cost += estimate.cost
            ci_gain += estimate.ci_gain * share
            fci_gain += estimate.fci_gain * share
            chosen.append(estimate.project.project_id)
            points.append(
                ParetoPoint(
                    cost=to_money(cost),
                    ci_improvement=round(ci_gain, self.ci_places),
                    fci_improvement=round(fci_gain, self.fci_places),
                    project_count=len(chosen),
                    project_ids=list(chosen),
                )
            )
        return points

    def cost_effectiveness_ranking(
        self, projects: list[PortfolioProject]
    ) -> list[RankedProject]:
        """Projects ordered by cost per building CI point; projects adding no CI rank last."""
        rows = []
        for estimate in self._estimates(projects)[0]:
            project = estimate.project
            rows.append(
                RankedProject(
                    rank=0,
                    project_id=project.project_id,
                    name=project.name,
                    cost=to_money(estimate.cost),
                    ci_improvement=round(estimate.ci_gain, self.ci_places),
                    fci_improvement=round(estimate.fci_gain, self.fci_places),
                    priority_score=project.priority_score,
                    cost_per_ci_point=_per_point(estimate.cost, estimate.ci_gain),
                    cost_per_fci_point=_per_point(estimate.cost, estimate.fci_gain),
                )
            )
        rows.sort(
            key=lambda r: (
                r.cost_per_ci_point is None,
                r.cost_per_ci_point or Decimal(0),
                r.project_id,
            )
        )
        for i, row in enumerate(rows):
            row.rank = i + 1
        return rows


def optimize_portfolio(
    projects: list[PortfolioProject],
    max_budget: Decimal,
    min_projects: int | None = None,
    max_projects: int | None = None,
) -> PortfolioOptimizationResult:
    constraints = PortfolioConstraints(
        max_budget=Decimal(str(max_budget)),
        min_projects=min_projects,
        max_projects=max_projects,
    )
    return PortfolioOptimizer().optimize(projects, constraints)
