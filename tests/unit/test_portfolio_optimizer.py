from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fci_engine.errors import InfeasiblePortfolio, InvalidBudget
from fci_engine.financial.portfolio_optimizer import (
    PortfolioOptimizer,
    optimize_portfolio,
    projects_from_snapshots,
)
from fci_engine.forecasting.condition_aggregator import ConditionAggregator
from fci_engine.models.schemas import PortfolioConstraints, PortfolioProject


def _project(project_id, cost, ci_gain, **overrides):
    fields = dict(
        project_id=project_id,
        current_ci=50.0,
        replacement_value=Decimal("1000000"),
        deferred_maintenance_cost=Decimal("80000"),
        estimated_cost=Decimal(cost),
        expected_ci_improvement=ci_gain,
    )
    fields.update(overrides)
    return PortfolioProject(**fields)


@pytest.fixture
def knapsack_projects():
    """One large efficient project and two smaller ones that together beat it."""
    return [
        _project("P1", "60000", 30.0),
        _project("P2", "50000", 20.0),
        _project("P3", "50000", 20.0),
    ]


def _constraints(budget, **kwargs):
    return PortfolioConstraints(max_budget=Decimal(budget), **kwargs)


class TestEstimate:
    def test_defaults_from_deferred_work(self):
        project = PortfolioProject(
            project_id="BLDG-1",
            current_ci=60.0,
            replacement_value=Decimal("1000000"),
            deferred_maintenance_cost=Decimal("100000"),
        )
        estimate = PortfolioOptimizer().estimate(project)
        assert estimate.cost == Decimal("100000")
        assert estimate.ci_gain == pytest.approx(30.0)
        # FCI 10% falls to the 20% residual share, 2%
        assert estimate.fci_gain == pytest.approx(8.0)

    def test_no_gain_above_target(self):
        project = _project("P9", "1000", None, current_ci=95.0)
        assert PortfolioOptimizer().estimate(project).ci_gain == 0.0


class TestOptimize:
    def test_exact_selection_beats_greedy(self, knapsack_projects):
        result = PortfolioOptimizer().optimize(knapsack_projects, _constraints("100000"))

        assert sorted(s.project_id for s in result.selected) == ["P2", "P3"]
        assert result.total_cost == Decimal("100000.00")
        assert result.total_ci_improvement == pytest.approx(13.33)
        assert result.ci_before == pytest.approx(50.0)
        assert result.ci_after == pytest.approx(63.33)
        assert result.fci_before == pytest.approx(8.0)
        assert result.total_fci_improvement == pytest.approx(4.2667)
        assert result.fci_after == pytest.approx(3.7333)
        assert result.budget_utilization == pytest.approx(100.0)
        assert result.cost_per_ci_point == Decimal("7500.00")
        assert result.selected[0].cost_per_ci_point == Decimal("2500.00")

    def test_max_projects(self, knapsack_projects):
        result = PortfolioOptimizer().optimize(
            knapsack_projects, _constraints("200000", max_projects=1)
        )
        assert [s.project_id for s in result.selected] == ["P1"]

    def test_min_projects_infeasible(self, knapsack_projects):
        with pytest.raises(InfeasiblePortfolio) as exc_info:
            PortfolioOptimizer().optimize(
                knapsack_projects, _constraints("100000", min_projects=3)
            )
        assert exc_info.value.field == "max_budget"

    def test_required_project(self, knapsack_projects):
        result = PortfolioOptimizer().optimize(
            knapsack_projects, _constraints("100000", required_project_ids=["P1"])
        )
        assert [s.project_id for s in result.selected] == ["P1"]
        assert result.total_ci_improvement == pytest.approx(10.0)

    def test_excluded_project(self, knapsack_projects):
        result = PortfolioOptimizer().optimize(
            knapsack_projects, _constraints("100000", excluded_project_ids=["P2"])
        )
        assert [s.project_id for s in result.selected] == ["P1"]

    def test_unknown_required_project(self, knapsack_projects):
        with pytest.raises(InfeasiblePortfolio) as exc_info:
            PortfolioOptimizer().optimize(
                knapsack_projects, _constraints("100000", required_project_ids=["P7"])
            )
        assert exc_info.value.field == "required_project_ids"

    def test_required_and_excluded_conflict(self, knapsack_projects):
        with pytest.raises(InfeasiblePortfolio):
            PortfolioOptimizer().optimize(
                knapsack_projects,
                _constraints(
                    "100000", required_project_ids=["P1"], excluded_project_ids=["P1"]
                ),
            )

    def test_invalid_budget(self, knapsack_projects):
        with pytest.raises(InvalidBudget):
            PortfolioOptimizer().optimize(knapsack_projects, _constraints("0"))

    def test_no_projects(self):
        with pytest.raises(InfeasiblePortfolio):
            PortfolioOptimizer().optimize([], _constraints("100000"))

    def test_input_order_does_not_matter(self, knapsack_projects):
        optimizer = PortfolioOptimizer()
        forward = optimizer.optimize(knapsack_projects, _constraints("100000"))
        backward = optimizer.optimize(
            list(reversed(knapsack_projects)), _constraints("100000")
        )
        assert forward == backward

    def test_optimize_portfolio_function(self, knapsack_projects):
        result = optimize_portfolio(knapsack_projects, Decimal("110000"))
        assert result.total_ci_improvement == pytest.approx(16.67)
        assert len(result.selected) == 2


class TestSensitivity:
    def test_budget_sweep(self, knapsack_projects):
        analysis = PortfolioOptimizer().analyze_sensitivity(
            knapsack_projects, Decimal("100000")
        )

        assert analysis.budget_levels[0] == Decimal("50000.00")
        assert analysis.budget_levels[-1] == Decimal("150000.00")
        assert len(analysis.results) == 11
        by_budget = {p.budget: p for p in analysis.results}
        assert by_budget[Decimal("100000.00")].project_count == 2
        assert by_budget[Decimal("150000.00")].ci_improvement == pytest.approx(16.67)
        # 60k funds P1 alone: the most CI per dollar, and the gain after it halves
        assert analysis.optimal_budget == Decimal("60000.00")
        assert analysis.inflection_point == Decimal("60000.00")

    def test_zero_budget_level_skipped(self, knapsack_projects):
        analysis = PortfolioOptimizer().analyze_sensitivity(
            knapsack_projects, Decimal("100000"), range_percent=100
        )
        assert len(analysis.results) == 10
        assert analysis.budget_levels[0] == Decimal("20000.00")

    def test_nothing_feasible_falls_back_to_base(self):
        analysis = PortfolioOptimizer().analyze_sensitivity([], Decimal("100000"))
        assert analysis.results == []
        assert analysis.optimal_budget == Decimal("100000")
        assert analysis.inflection_point == Decimal("100000")


class TestParetoFrontier:
    def test_cumulative_points(self, knapsack_projects):
        points = PortfolioOptimizer().pareto_frontier(knapsack_projects)

        assert [p.project_ids for p in points] == [["P1"], ["P1", "P2"], ["P1", "P2", "P3"]]
        assert [p.cost for p in points] == [
            Decimal("60000.00"),
            Decimal("110000.00"),
            Decimal("160000.00"),
        ]
        assert [p.ci_improvement for p in points] == pytest.approx([10.0, 16.67, 23.33])
        assert points[-1].project_count == 3

    def test_empty(self):
        assert PortfolioOptimizer().pareto_frontier([]) == []


class TestRanking:
    def test_cost_per_point_order(self, knapsack_projects):
        idle = _project("P0", "5000", None, current_ci=95.0)
        ranked = PortfolioOptimizer().cost_effectiveness_ranking(knapsack_projects + [idle])

        assert [r.project_id for r in ranked] == ["P1", "P2", "P3", "P0"]
        assert [r.rank for r in ranked] == [1, 2, 3, 4]
        assert ranked[0].cost_per_ci_point == Decimal("2000.00")
        assert ranked[0].cost_per_fci_point == Decimal("9375.00")
        assert ranked[-1].cost_per_ci_point is None


class TestFromSnapshots:
    def test_buildings_with_deferred_work(self, three_component_assessments):
        now = datetime(2025, 1, 15, tzinfo=timezone.utc)
        aggregator = ConditionAggregator()
        repaired = [
            a.model_copy(update={"estimated_repair_cost": Decimal("0")})
            for a in three_component_assessments
        ]
        funded = aggregator.building_snapshot(three_component_assessments, "BLDG-1", now=now)
        clean = aggregator.building_snapshot(repaired, "BLDG-2", now=now)

        projects = projects_from_snapshots([funded, clean], {"BLDG-1": 4.5})

        assert [p.project_id for p in projects] == ["BLDG-1"]
        project = projects[0]
        assert project.current_ci == pytest.approx(61.67)
        assert project.current_fci == pytest.approx(2.1429)
        assert project.deferred_maintenance_cost == Decimal("7500.00")
        assert project.priority_score == 4.5
