from decimal import Decimal

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from fci_engine.models.database import (
    get_engine,
    get_session,
    get_session_factory,
    init_db,
)
from fci_engine.models.orm import CashFlowProjectionRecord


class TestDatabase:
    def test_get_engine_returns_engine(self):
        engine = get_engine("sqlite:///:memory:")
        assert isinstance(engine, Engine)

    def test_get_session_factory(self):
        engine = get_engine("sqlite:///:memory:")
        factory = get_session_factory(engine)
        assert isinstance(factory, sessionmaker)

    def test_get_session_context_manager(self):
        engine = get_engine("sqlite:///:memory:")
        init_db(engine)
        with get_session(engine) as session:
            assert session is not None

    def test_init_db_creates_tables(self):
        engine = get_engine("sqlite:///:memory:")
        init_db(engine)
        tables = inspect(engine).get_table_names()
        for name in (
            "condition_snapshots",
            "risk_scores",
            "prediction_history",
            "optimization_scenarios",
            "scenario_strategies",
            "cash_flow_projections",
        ):
            assert name in tables

    def test_init_db_returns_table_names(self):
        tables = init_db(get_engine("sqlite:///:memory:"))
        assert "risk_scores" in tables
        assert tables == sorted(tables)

    def test_sqlite_enforces_foreign_keys(self):
        engine = get_engine("sqlite:///:memory:")
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1

    def test_file_database_directory_created(self, tmp_path):
        path = tmp_path / "nested" / "out.db"
        engine = get_engine(f"sqlite:///{path}")
        init_db(engine)
        assert path.exists()
        engine.dispose()

    def test_orphan_cash_flow_rejected(self):
        engine = get_engine("sqlite:///:memory:")
        init_db(engine)
        with pytest.raises(IntegrityError):
            with get_session(engine) as session:
                session.add(
                    CashFlowProjectionRecord(
                        scenario_id=999,
                        year=2025,
                        capital_cost=Decimal("0"),
                        maintenance_cost=Decimal("0"),
                        operating_cost=Decimal("0"),
                        cost_avoidance=Decimal("0"),
                        efficiency_gains=Decimal("0"),
                        net_cash_flow=Decimal("0"),
                        cumulative_cash_flow=Decimal("0"),
                    )
                )
