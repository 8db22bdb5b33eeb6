from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from fci_engine.models.enums import ConditionRating, OptimizationGoal, StrategyType
from fci_engine.models.orm import Base
from fci_engine.models.schemas import (
    Assessment,
    DeteriorationCurve,
    LinearShape,
    OptimizationScenario,
    ScenarioStrategy,
)


@pytest.fixture(scope="session")
def engine():
    eng = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    sess = Session(bind=connection)
    yield sess
    sess.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def three_component_assessments():
    """Roof, HVAC and plumbing for one building; 7500 open repairs over 350000 CRV."""
    return [
        Assessment(
            id="A-1",
            project_id="P-1",
            asset_id="BLDG-1",
            component_code="B30",
            condition=ConditionRating.FAIR,
            replacement_value=Decimal("100000"),
            estimated_repair_cost=Decimal("5000"),
            expected_useful_life=25,
            remaining_useful_life=10,
            assessed_at=date(2024, 5, 1),
        ),
        Assessment(
            id="A-2",
            project_id="P-1",
            asset_id="BLDG-1",
            component_code="D30",
            condition=ConditionRating.GOOD,
            replacement_value=Decimal("200000"),
            estimated_repair_cost=Decimal("0"),
            expected_useful_life=20,
            remaining_useful_life=15,
            assessed_at=date(2024, 5, 1),
        ),
        Assessment(
            id="A-3",
            project_id="P-1",
            asset_id="BLDG-1",
            component_code="D20",
            condition=ConditionRating.POOR,
            replacement_value=Decimal("50000"),
            estimated_repair_cost=Decimal("2500"),
            expected_useful_life=35,
            remaining_useful_life=3,
            assessed_at=date(2024, 5, 1),
        ),
    ]


@pytest.fixture
def linear_curve():
    """100 -> 0 over a 40-year service life."""
    return DeteriorationCurve(
        name="roof design",
        service_life=40,
        shape=LinearShape(points=[100, 0]),
    )


@pytest.fixture
def draft_scenario():
    return OptimizationScenario(
        id="S-1",
        project_id="P-1",
        name="FY25 capital plan",
        budget_constraint=Decimal("100000"),
        time_horizon=3,
        discount_rate=0.03,
        optimization_goal=OptimizationGoal.MAXIMIZE_ROI,
        start_year=2025,
    )


def _candidate(
    strategy_id: str,
    component_code: str,
    cost: str,
    failure_cost_avoided: str = "0",
    strategy: StrategyType = StrategyType.REPLACE,
    action_year: int = 2025,
    **overrides,
) -> ScenarioStrategy:
    fields = dict(
        id=strategy_id,
        component_code=component_code,
        asset_id="BLDG-1",
        strategy=strategy,
        action_year=action_year,
        strategy_cost=Decimal(cost),
        condition_improvement=0.0,
        risk_reduction=0.0,
        failure_cost_avoided=Decimal(failure_cost_avoided),
        maintenance_savings=Decimal("0"),
    )
    fields.update(overrides)
    return ScenarioStrategy(**fields)


@pytest.fixture
def make_candidate():
    return _candidate


@pytest.fixture
def budget_candidates():
    """Two same-year candidates with priorities 9 and 7 under maximize_roi."""
    return [
        _candidate("roof-replace", "B30", "60000", "540000"),
        _candidate("hvac-replace", "D30", "70000", "490000"),
    ]
