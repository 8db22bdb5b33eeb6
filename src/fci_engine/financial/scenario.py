"""Scenario lifecycle: draft -> optimized -> approved -> implemented.

An optimized scenario can be sent back to draft for another run; approved and
implemented scenarios are frozen.
"""

from fci_engine.errors import ScenarioStateError
from fci_engine.models.enums import ScenarioStatus, StrategyType
from fci_engine.models.schemas import (
    MaintenanceEntry,
    OptimizationResult,
    OptimizationScenario,
)

TRANSITIONS: dict[ScenarioStatus, frozenset[ScenarioStatus]] = {
    ScenarioStatus.DRAFT: frozenset({ScenarioStatus.OPTIMIZED}),
    ScenarioStatus.OPTIMIZED: frozenset({ScenarioStatus.APPROVED, ScenarioStatus.DRAFT}),
    ScenarioStatus.APPROVED: frozenset({ScenarioStatus.IMPLEMENTED}),
    ScenarioStatus.IMPLEMENTED: frozenset(),
}


def can_transition(current: ScenarioStatus, target: ScenarioStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(
    scenario: OptimizationScenario, target: ScenarioStatus
) -> OptimizationScenario:
    """Return a copy of ``scenario`` moved to ``target``.

    Raises:
        ScenarioStateError: if the lifecycle does not allow the move.
    """
    if not can_transition(scenario.status, target):
        raise ScenarioStateError(
            f"Scenario '{scenario.name}' cannot move from "
            f"{scenario.status.value} to {target.value}",
            field="status",
            value=scenario.status.value,
        )
    return scenario.model_copy(update={"status": target})


def ensure_optimizable(scenario: OptimizationScenario) -> None:
    if scenario.status is not ScenarioStatus.DRAFT:
        raise ScenarioStateError(
            f"Only draft scenarios can be optimized; '{scenario.name}' is "
            f"{scenario.status.value}",
            field="status",
            value=scenario.status.value,
        )


def reopen(result: OptimizationResult) -> OptimizationScenario:
    """Send an optimized scenario back to draft so it can be re-run."""
    return transition(result.scenario, ScenarioStatus.DRAFT)


def approve(result: OptimizationResult) -> OptimizationResult:
    return result.model_copy(
        update={"scenario": transition(result.scenario, ScenarioStatus.APPROVED)}
    )


def implement(result: OptimizationResult) -> OptimizationResult:
    return result.model_copy(
        update={"scenario": transition(result.scenario, ScenarioStatus.IMPLEMENTED)}
    )


def completed_maintenance_entries(result: OptimizationResult) -> list[MaintenanceEntry]:
    """Selected work of an implemented scenario, as maintenance entries for the host."""
    if result.scenario.status is not ScenarioStatus.IMPLEMENTED:
        raise ScenarioStateError(
            f"Scenario '{result.scenario.name}' is {result.scenario.status.value}; "
            "only implemented scenarios produce maintenance entries",
            field="status",
            value=result.scenario.status.value,
        )

    entries = []
    for strategy in result.selected_strategies:
        if strategy.strategy is StrategyType.DO_NOTHING:
            continue
        entries.append(
            MaintenanceEntry(
                scenario_id=result.scenario.id,
                source_strategy_id=strategy.id,
                component_code=strategy.component_code,
                asset_id=strategy.asset_id,
                strategy=strategy.strategy,
                year=strategy.action_year,
                cost=strategy.strategy_cost,
                condition_improvement=strategy.condition_improvement or 0.0,
                life_extension=strategy.life_extension,
            )
        )
    return sorted(entries, key=lambda e: (e.year, e.component_code, e.source_strategy_id))
