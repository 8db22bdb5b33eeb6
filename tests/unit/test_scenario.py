import pytest

from fci_engine.errors import ScenarioStateError
from fci_engine.financial.capital_optimizer import CapitalPlanningOptimizer
from fci_engine.financial.scenario import (
    approve,
    can_transition,
    completed_maintenance_entries,
    implement,
    reopen,
    transition,
)
from fci_engine.models.enums import ScenarioStatus, StrategyType


@pytest.fixture
def optimized(draft_scenario, budget_candidates, make_candidate):
    nothing = make_candidate("plumbing-none", "D20", "0", strategy=StrategyType.DO_NOTHING)
    return CapitalPlanningOptimizer().optimize(draft_scenario, budget_candidates + [nothing])


class TestTransitions:
    def test_allowed(self):
        assert can_transition(ScenarioStatus.DRAFT, ScenarioStatus.OPTIMIZED)
        assert can_transition(ScenarioStatus.OPTIMIZED, ScenarioStatus.DRAFT)
        assert not can_transition(ScenarioStatus.DRAFT, ScenarioStatus.APPROVED)
        assert not can_transition(ScenarioStatus.IMPLEMENTED, ScenarioStatus.DRAFT)

    def test_illegal_transition_raises(self, draft_scenario):
        with pytest.raises(ScenarioStateError) as exc_info:
            transition(draft_scenario, ScenarioStatus.IMPLEMENTED)
        assert exc_info.value.value == "draft"

    def test_reopen_for_rerun(self, optimized):
        draft = reopen(optimized)
        assert draft.status == ScenarioStatus.DRAFT

    def test_approved_is_frozen(self, optimized):
        approved = approve(optimized)
        with pytest.raises(ScenarioStateError):
            reopen(approved)
        with pytest.raises(ScenarioStateError):
            CapitalPlanningOptimizer().optimize(approved.scenario, approved.strategies)


class TestMaintenanceEntries:
    def test_only_after_implementation(self, optimized):
        with pytest.raises(ScenarioStateError):
            completed_maintenance_entries(approve(optimized))

    def test_entries_for_selected_work(self, optimized):
        done = implement(approve(optimized))
        assert done.scenario.status == ScenarioStatus.IMPLEMENTED
        entries = completed_maintenance_entries(done)
        assert [(e.source_strategy_id, e.year) for e in entries] == [
            ("roof-replace", 2025),
            ("hvac-replace", 2026),
        ]
        assert entries[0].scenario_id == "S-1"
        assert entries[0].cost == optimized.strategies[0].strategy_cost
