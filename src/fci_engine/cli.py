import json
import logging
from datetime import date
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(help="fci-engine CLI: condition indices, risk and capital planning")
console = Console()


def _load_json(path: Path):
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)
    return json.loads(path.read_text())


def _fmt(value, places: int = 2) -> str:
    if value is None:
        return "undefined"
    return f"{float(value):,.{places}f}"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command("init-db")
def init_db():
    """Initialize the database (create the output tables)."""
    from fci_engine.models.database import get_engine
    from fci_engine.models.database import init_db as _init_db

    tables = _init_db(get_engine())
    console.print(f"[green]Database initialized ({len(tables)} tables).[/green]")


@app.command()
def curve(
    age: float = typer.Option(..., "--age", "-a", help="Component age in years"),
    service_life: float = typer.Option(
        None, "--service-life", "-l", help="Service life in years (with --param)"
    ),
    mode: str = typer.Option(
        "linear", "--mode", "-m", help="linear, polynomial or exponential"
    ),
    param: list[float] = typer.Option(
        None, "--param", "-p", help="Curve parameter; repeat up to 6 times"
    ),
    curve_file: Path = typer.Option(
        None, "--file", "-f", help="JSON deterioration curve instead of --param"
    ),
    threshold: float = typer.Option(
        None, "--threshold", "-t", help="Failure threshold (defaults to curve terminal)"
    ),
):
    """Evaluate a deterioration curve at an age."""
    from pydantic import ValidationError

    from fci_engine.errors import InvalidCurveParameters
    from fci_engine.forecasting.deterioration import evaluate, from_parameters
    from fci_engine.models.schemas import DeteriorationCurve

    try:
        if curve_file is not None:
            curve_obj = DeteriorationCurve.model_validate(_load_json(curve_file))
        else:
            if not param or service_life is None:
                console.print("[red]Provide --file, or --param values and --service-life.[/red]")
                raise typer.Exit(1)
            curve_obj = from_parameters("cli", mode, list(param), service_life)
    except (InvalidCurveParameters, ValidationError) as exc:
        console.print(f"[red]Invalid curve: {exc}[/red]")
        raise typer.Exit(1)

    result = evaluate(curve_obj, age, threshold)
    console.print(
        f"[green]{result.curve_name}[/green] at age {result.age_years:g}: "
        f"condition={result.condition:.2f}, remaining life={result.remaining_life:.2f} years"
    )


@app.command()
def risk(
    input_file: Path = typer.Argument(..., help='JSON with "pof", "cof" and optional "weights"'),
):
    """Score probability and consequence of failure."""
    from fci_engine.models.schemas import CoFFactors, PoFFactors, RiskWeights
    from fci_engine.risk.scorer import RiskScorer

    payload = _load_json(input_file)
    weights = RiskWeights.model_validate(payload["weights"]) if "weights" in payload else None
    result = RiskScorer(weights).score(
        PoFFactors.model_validate(payload.get("pof", {})),
        CoFFactors.model_validate(payload.get("cof", {})),
    )

    table = Table(title=f"Risk ({result.rule.value} rule)")
    table.add_column("Measure", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("PoF", _fmt(result.pof, 4))
    table.add_row("CoF", _fmt(result.cof, 4))
    table.add_row("Risk score", _fmt(result.risk_score, 4))
    table.add_row("Risk level", result.risk_level.value if result.risk_level else "unknown")
    console.print(table)
    for issue in result.issues:
        console.print(f"[yellow]{issue.kind.value}: {issue.message}[/yellow]")


@app.command()
def aggregate(
    input_file: Path = typer.Argument(..., help="JSON list of assessments"),
    entity_id: str = typer.Option(None, "--entity-id", "-e", help="Building id"),
    project_id: str = typer.Option(None, "--project-id", help="Project id"),
    save: bool = typer.Option(False, "--save", help="Write snapshots to the database"),
):
    """Roll assessments up into system and building CI/FCI snapshots."""
    from pydantic import TypeAdapter

    from fci_engine.forecasting.condition_aggregator import ConditionAggregator
    from fci_engine.models.schemas import Assessment

    assessments = TypeAdapter(list[Assessment]).validate_python(_load_json(input_file))
    aggregator = ConditionAggregator()
    snapshots = aggregator.system_snapshots(assessments, project_id)
    snapshots.append(
        aggregator.building_snapshot(assessments, entity_id or "building", project_id)
    )

    table = Table(title="Condition Snapshots")
    table.add_column("Level", style="cyan")
    table.add_column("Entity")
    table.add_column("CI", justify="right", style="green")
    table.add_column("FCI %", justify="right", style="yellow")
    table.add_column("Deferred", justify="right")
    table.add_column("CRV", justify="right")
    for s in snapshots:
        table.add_row(
            s.level.value,
            s.entity_id or "-",
            _fmt(s.ci),
            _fmt(s.fci, 4),
            f"${float(s.deferred_maintenance_cost):,.2f}",
            f"${float(s.current_replacement_value):,.2f}",
        )
    console.print(table)

    if save:
        from fci_engine.models.database import get_engine, get_session
        from fci_engine.models.repository import save_snapshot

        with get_session(get_engine()) as session:
            for s in snapshots:
                save_snapshot(session, s)
        console.print(f"[green]Saved {len(snapshots)} snapshots.[/green]")


@app.command()
def predict(
    input_file: Path = typer.Argument(
        ..., help='JSON with "component", optional "config" and "history"'
    ),
    method: str = typer.Option(
        "curve_based", "--method", "-m", help="curve_based, historical_trend or hybrid"
    ),
    as_of: str = typer.Option(None, "--as-of", help="Forecast date (YYYY-MM-DD)"),
):
    """Forecast condition and failure year for one component."""
    from pydantic import TypeAdapter

    from fci_engine.forecasting.condition_predictor import ConditionPredictor
    from fci_engine.models.enums import PredictionMethod
    from fci_engine.models.schemas import (
        ComponentContext,
        ComponentDeteriorationConfig,
        HistoricalCondition,
    )

    try:
        prediction_method = PredictionMethod(method)
    except ValueError:
        console.print(f"[red]Unknown method: {method}[/red]")
        raise typer.Exit(1)

    payload = _load_json(input_file)
    context = ComponentContext.model_validate(payload["component"])
    config = (
        ComponentDeteriorationConfig.model_validate(payload["config"])
        if payload.get("config")
        else None
    )
    history = TypeAdapter(list[HistoricalCondition]).validate_python(
        payload.get("history", [])
    )

    result = ConditionPredictor().predict(
        context,
        config,
        history,
        prediction_method,
        as_of=date.fromisoformat(as_of) if as_of else None,
    )

    console.print(f"[green]{result.component_code}[/green] via {result.method.value}")
    console.print(f"  Predicted condition: {_fmt(result.predicted_condition)}")
    console.print(f"  Remaining life: {_fmt(result.predicted_remaining_life)} years")
    console.print(f"  Failure year: {result.predicted_failure_year or 'unknown'}")
    console.print(f"  Confidence: {result.confidence_score:.2f}")
    for issue in result.issues:
        console.print(f"[yellow]{issue.kind.value}: {issue.message}[/yellow]")


@app.command()
def optimize(
    input_file: Path = typer.Argument(
        ...,
        help='JSON with "scenario" and "candidates" or "assessments" to generate them from',
    ),
    save: bool = typer.Option(False, "--save", help="Write the result to the database"),
):
    """Select a capital plan under budget and project its cash flows."""
    from pydantic import TypeAdapter

    from fci_engine.errors import EngineError
    from fci_engine.financial.capital_optimizer import CapitalPlanningOptimizer
    from fci_engine.financial.strategy_generator import generate_strategy_options
    from fci_engine.models.schemas import Assessment, OptimizationScenario, ScenarioStrategy

    payload = _load_json(input_file)
    scenario = OptimizationScenario.model_validate(payload["scenario"])
    assessments = (
        TypeAdapter(list[Assessment]).validate_python(payload["assessments"])
        if "assessments" in payload
        else None
    )
    if "candidates" in payload:
        candidates = TypeAdapter(list[ScenarioStrategy]).validate_python(
            payload["candidates"]
        )
    else:
        candidates = []
        for assessment in assessments or []:
            candidates.extend(
                generate_strategy_options(
                    assessment,
                    scenario.start_year,
                    scenario.time_horizon,
                    scenario.discount_rate,
                )
            )

    try:
        result = CapitalPlanningOptimizer().optimize(scenario, candidates, assessments)
    except EngineError as exc:
        console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Selected Strategies: {scenario.name}")
    table.add_column("Year", style="cyan")
    table.add_column("Component")
    table.add_column("Strategy")
    table.add_column("Cost", justify="right", style="green")
    table.add_column("Priority", justify="right")
    for s in sorted(result.selected_strategies, key=lambda s: (s.action_year, s.id)):
        flag = " [red](over budget)[/red]" if s.over_budget else ""
        table.add_row(
            str(s.action_year),
            s.component_code,
            s.strategy.value + flag,
            f"${float(s.strategy_cost):,.2f}",
            _fmt(s.priority_score, 4),
        )
    console.print(table)

    summary = result.summary
    console.print(f"  Total cost: ${float(summary.total_cost):,.2f}")
    console.print(f"  Total benefit: ${float(summary.total_benefit):,.2f}")
    console.print(f"  NPV: ${float(summary.npv):,.2f}")
    console.print(f"  ROI: {_fmt(summary.roi, 4)}")
    console.print(f"  CI: {_fmt(summary.ci_before)} -> {_fmt(summary.ci_after)}")
    console.print(f"  FCI %: {_fmt(summary.fci_before, 4)} -> {_fmt(summary.fci_after, 4)}")
    if result.is_partial:
        console.print("[yellow]Partial result: some candidates were excluded.[/yellow]")
    for issue in result.issues:
        console.print(f"[yellow]{issue.kind.value}: {issue.message}[/yellow]")

    if save:
        from fci_engine.models.database import get_engine, get_session
        from fci_engine.models.repository import save_optimization

        with get_session(get_engine()) as session:
            save_optimization(session, result)
        console.print("[green]Scenario saved.[/green]")


@app.command()
def portfolio(
    input_file: Path = typer.Argument(..., help="JSON list of portfolio projects"),
    budget: float = typer.Option(..., "--budget", "-b", help="Total budget"),
    min_projects: int = typer.Option(None, "--min-projects", help="Fund at least this many"),
    max_projects: int = typer.Option(None, "--max-projects", help="Fund at most this many"),
    sensitivity: bool = typer.Option(
        False, "--sensitivity", help="Sweep budgets within 50% of --budget"
    ),
    ranking: bool = typer.Option(False, "--ranking", help="Show cost per CI point ranking"),
):
    """Pick the projects that raise portfolio CI the most within a budget."""
    from decimal import Decimal

    from pydantic import TypeAdapter, ValidationError

    from fci_engine.errors import EngineError
    from fci_engine.financial.portfolio_optimizer import PortfolioOptimizer
    from fci_engine.models.schemas import PortfolioConstraints, PortfolioProject

    try:
        projects = TypeAdapter(list[PortfolioProject]).validate_python(_load_json(input_file))
        constraints = PortfolioConstraints(
            max_budget=Decimal(str(budget)),
            min_projects=min_projects,
            max_projects=max_projects,
        )
    except ValidationError as exc:
        console.print(f"[red]Invalid input: {exc}[/red]")
        raise typer.Exit(1)

    optimizer = PortfolioOptimizer()
    try:
        result = optimizer.optimize(projects, constraints)
    except EngineError as exc:
        console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
        raise typer.Exit(1)

    table = Table(title="Funded Projects")
    table.add_column("Project", style="cyan")
    table.add_column("Cost", justify="right", style="green")
    table.add_column("CI gain", justify="right")
    table.add_column("FCI gain", justify="right")
    table.add_column("$ / CI point", justify="right")
    for s in result.selected:
        table.add_row(
            s.name or s.project_id,
            f"${float(s.cost):,.2f}",
            _fmt(s.ci_improvement),
            _fmt(s.fci_improvement, 4),
            _fmt(s.cost_per_ci_point),
        )
    console.print(table)
    console.print(f"  Total cost: ${float(result.total_cost):,.2f}")
    console.print(f"  Portfolio CI: {_fmt(result.ci_before)} -> {_fmt(result.ci_after)}")
    console.print(
        f"  Portfolio FCI %: {_fmt(result.fci_before, 4)} -> {_fmt(result.fci_after, 4)}"
    )
    console.print(f"  Budget used: {result.budget_utilization:.2f}%")

    if sensitivity:
        analysis = optimizer.analyze_sensitivity(projects, constraints.max_budget)
        sweep = Table(title="Budget Sensitivity")
        sweep.add_column("Budget", justify="right", style="cyan")
        sweep.add_column("Projects", justify="right")
        sweep.add_column("CI gain", justify="right", style="green")
        sweep.add_column("Marginal", justify="right")
        for point in analysis.results:
            sweep.add_row(
                f"${float(point.budget):,.0f}",
                str(point.project_count),
                _fmt(point.ci_improvement),
                _fmt(point.marginal_benefit),
            )
        console.print(sweep)
        console.print(f"  Best CI per dollar at: ${float(analysis.optimal_budget):,.2f}")
        console.print(f"  Diminishing returns from: ${float(analysis.inflection_point):,.2f}")

    if ranking:
        ranked = Table(title="Cost Effectiveness")
        ranked.add_column("Rank", justify="right", style="cyan")
        ranked.add_column("Project")
        ranked.add_column("$ / CI point", justify="right", style="green")
        ranked.add_column("$ / FCI point", justify="right")
        for row in optimizer.cost_effectiveness_ranking(projects):
            ranked.add_row(
                str(row.rank),
                row.name or row.project_id,
                _fmt(row.cost_per_ci_point),
                _fmt(row.cost_per_fci_point),
            )
        console.print(ranked)


if __name__ == "__main__":
    app()
