import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

import pandas as pd
from pydantic import BaseModel

from fci_engine.classification import ComponentRegistry
from fci_engine.config.resolution import resolve_component_weight
from fci_engine.config.settings import get_settings
from fci_engine.models.enums import AggregationLevel, ConditionRating, IssueKind
from fci_engine.models.schemas import (
    Assessment,
    ConditionSnapshot,
    EngineIssue,
    RatingScale,
)

logger = logging.getLogger(__name__)

CALCULATION_METHOD = "weighted_average"

_ZERO = Decimal("0")


def _quantize(value: Decimal, places: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


class ConditionTotals(BaseModel):
    """Exact partial sums for one scope. Merging is associative and commutative."""

    weighted_score: Decimal = _ZERO
    total_weight: Decimal = _ZERO
    repair_cost: Decimal = _ZERO
    replacement_value: Decimal = _ZERO
    assessed_count: int = 0
    excluded_count: int = 0

    def merge(self, other: "ConditionTotals") -> "ConditionTotals":
        return ConditionTotals(
            weighted_score=self.weighted_score + other.weighted_score,
            total_weight=self.total_weight + other.total_weight,
            repair_cost=self.repair_cost + other.repair_cost,
            replacement_value=self.replacement_value + other.replacement_value,
            assessed_count=self.assessed_count + other.assessed_count,
            excluded_count=self.excluded_count + other.excluded_count,
        )


def latest_assessments(assessments: Iterable[Assessment]) -> list[Assessment]:
    """Keep only the newest version of each (asset, component) assessment."""
    latest: dict[tuple[str | None, str], Assessment] = {}

    def _rank(a: Assessment):
        return (a.version, a.assessed_at or date.min, a.id or "")

    for assessment in assessments:
        key = (assessment.asset_id, assessment.component_code)
        current = latest.get(key)
        if current is None or _rank(assessment) > _rank(current):
            latest[key] = assessment
    return [latest[key] for key in sorted(latest, key=lambda k: (k[0] or "", k[1]))]


class ConditionAggregator:
    """Rolls component assessments up into CI/FCI snapshots."""

    def __init__(
        self,
        rating_scale: RatingScale | None = None,
        component_weights: Mapping[str, float] | None = None,
        registry: ComponentRegistry | None = None,
    ):
        settings = get_settings()
        self.rating_scale = rating_scale or RatingScale()
        self.component_weights = dict(component_weights or {})
        self.registry = registry or ComponentRegistry.uniformat()
        self.ci_places = settings.ci_decimal_places
        self.fci_places = settings.fci_decimal_places
        self.money_places = settings.money_decimal_places

    def condition_score(self, assessment: Assessment) -> Decimal | None:
        """Percent condition score, or None when the component was not assessed."""
        if assessment.condition == ConditionRating.NOT_ASSESSED:
            return None
        if assessment.condition_percentage is not None:
            return Decimal(str(assessment.condition_percentage))
        score = self.rating_scale.condition_scores.get(assessment.condition)
        return None if score is None else Decimal(str(score))

    def totals(self, assessments: Iterable[Assessment]) -> ConditionTotals:
        """Partial sums over the latest version of each assessment in scope."""
        weighted = _ZERO
        weight_sum = _ZERO
        repair = _ZERO
        replacement = _ZERO
        assessed = 0
        excluded = 0

        for assessment in latest_assessments(assessments):
            replacement += assessment.replacement_value or _ZERO
            if assessment.is_open:
                repair += assessment.estimated_repair_cost or _ZERO

            score = self.condition_score(assessment)
            if score is None:
                excluded += 1
                continue
            weight = Decimal(
                str(
                    resolve_component_weight(
                        assessment.component_code, self.component_weights
                    )
                )
            )
            weighted += weight * score
            weight_sum += weight
            assessed += 1

        return ConditionTotals(
            weighted_score=weighted,
            total_weight=weight_sum,
            repair_cost=repair,
            replacement_value=replacement,
            assessed_count=assessed,
            excluded_count=excluded,
        )

    def snapshot(
        self,
        totals: ConditionTotals,
        level: AggregationLevel,
        entity_id: str | None = None,
        project_id: str | None = None,
        now: datetime | None = None,
    ) -> ConditionSnapshot:
        """Turn partial sums into a snapshot at the declared decimal precision."""
        issues: list[EngineIssue] = []
        scope = f"{level.value}:{entity_id}" if entity_id else level.value

        if totals.total_weight > 0:
            percent = totals.weighted_score / totals.total_weight
            ci = _quantize(self.rating_scale.to_scale(percent), self.ci_places)
        else:
            ci = None
            issues.append(
                EngineIssue(
                    kind=IssueKind.INSUFFICIENT_DATA,
                    message=f"No assessed components in {scope}; CI is undefined",
                    record_id=entity_id,
                    field="ci",
                )
            )

        if totals.replacement_value > 0:
            fci = _quantize(
                totals.repair_cost / totals.replacement_value * 100, self.fci_places
            )
        else:
            fci = None
            issues.append(
                EngineIssue(
                    kind=IssueKind.UNDEFINED_RATIO,
                    message=f"Replacement value is zero in {scope}; FCI is undefined",
                    record_id=entity_id,
                    field="fci",
                )
            )

        return ConditionSnapshot(
            project_id=project_id,
            level=level,
            entity_id=entity_id,
            ci=ci,
            fci=fci,
            deferred_maintenance_cost=_quantize(totals.repair_cost, self.money_places),
            current_replacement_value=_quantize(
                totals.replacement_value, self.money_places
            ),
            assessed_count=totals.assessed_count,
            excluded_count=totals.excluded_count,
            calculated_at=now or datetime.now(timezone.utc),
            calculation_method=f"{CALCULATION_METHOD}:{self.rating_scale.name}",
            issues=issues,
        )

    def aggregate(
        self,
        assessments: Iterable[Assessment],
        level: AggregationLevel = AggregationLevel.BUILDING,
        entity_id: str | None = None,
        project_id: str | None = None,
        now: datetime | None = None,
    ) -> ConditionSnapshot:
        """CI/FCI over every assessment in scope at a single level."""
        return self.snapshot(
            self.totals(assessments), level, entity_id, project_id, now
        )

    def component_snapshots(
        self,
        assessments: Iterable[Assessment],
        project_id: str | None = None,
        now: datetime | None = None,
    ) -> list[ConditionSnapshot]:
        groups: dict[str, list[Assessment]] = {}
        for assessment in assessments:
            groups.setdefault(assessment.component_code, []).append(assessment)
        return [
            self.aggregate(
                groups[code], AggregationLevel.COMPONENT, code, project_id, now
            )
            for code in sorted(groups)
        ]

    def system_snapshots(
        self,
        assessments: Iterable[Assessment],
        project_id: str | None = None,
        now: datetime | None = None,
    ) -> list[ConditionSnapshot]:
        """One snapshot per first-level classification code."""
        groups: dict[str, list[Assessment]] = {}
        for assessment in assessments:
            system = self.registry.system_code(assessment.component_code)
            groups.setdefault(system, []).append(assessment)
        return [
            self.aggregate(groups[code], AggregationLevel.SYSTEM, code, project_id, now)
            for code in sorted(groups)
        ]

    def building_snapshot(
        self,
        assessments: Iterable[Assessment],
        building_id: str,
        project_id: str | None = None,
        now: datetime | None = None,
    ) -> ConditionSnapshot:
        return self.aggregate(
            assessments, AggregationLevel.BUILDING, building_id, project_id, now
        )

    def portfolio_snapshot(
        self,
        buildings: Mapping[str, list[Assessment]],
        portfolio_id: str | None = None,
        max_workers: int | None = None,
        now: datetime | None = None,
    ) -> tuple[ConditionSnapshot, list[ConditionSnapshot]]:
        """Roll buildings up into a portfolio snapshot.

        Per-building totals may be computed in parallel; the final reduction
        runs in building-id order so the result does not depend on which
        worker finishes first.

        Returns:
            The portfolio snapshot and the per-building snapshots, ordered by id.
        """
        building_ids = sorted(buildings)
        if max_workers and max_workers > 1 and len(building_ids) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                partials = list(
                    pool.map(lambda bid: self.totals(buildings[bid]), building_ids)
                )
        else:
            partials = [self.totals(buildings[bid]) for bid in building_ids]

        combined = ConditionTotals()
        for partial in partials:
            combined = combined.merge(partial)

        building_snaps = [
            self.snapshot(partial, AggregationLevel.BUILDING, bid, None, now)
            for bid, partial in zip(building_ids, partials)
        ]
        portfolio = self.snapshot(
            combined, AggregationLevel.PORTFOLIO, portfolio_id, None, now
        )
        logger.info(
            "Portfolio %s: %d buildings, CI=%s, FCI=%s",
            portfolio_id or "-",
            len(building_ids),
            portfolio.ci,
            portfolio.fci,
        )
        return portfolio, building_snaps


def aggregate(
    assessments: Iterable[Assessment],
    weights: Mapping[str, float] | None = None,
    level: AggregationLevel = AggregationLevel.BUILDING,
    entity_id: str | None = None,
    project_id: str | None = None,
    rating_scale: RatingScale | None = None,
) -> ConditionSnapshot:
    """CI/FCI for a set of assessments with optional per-component weights."""
    aggregator = ConditionAggregator(rating_scale=rating_scale, component_weights=weights)
    return aggregator.aggregate(assessments, level, entity_id, project_id)


def is_stale(
    snapshot: ConditionSnapshot,
    max_age: timedelta | None = None,
    now: datetime | None = None,
) -> bool:
    """True once a snapshot is older than ``max_age`` (settings default)."""
    if max_age is None:
        max_age = timedelta(hours=get_settings().snapshot_max_age_hours)
    now = now or datetime.now(timezone.utc)
    calculated_at = snapshot.calculated_at
    if calculated_at.tzinfo is None:
        calculated_at = calculated_at.replace(tzinfo=timezone.utc)
    return now - calculated_at > max_age


def snapshots_frame(snapshots: list[ConditionSnapshot]) -> pd.DataFrame:
    """Snapshots as a DataFrame, one row per snapshot."""
    if not snapshots:
        return pd.DataFrame()

    data = []
    for s in snapshots:
        data.append(
            {
                "project_id": s.project_id,
                "level": s.level.value,
                "entity_id": s.entity_id,
                "ci": float(s.ci) if s.ci is not None else None,
                "fci": float(s.fci) if s.fci is not None else None,
                "deferred_maintenance_cost": float(s.deferred_maintenance_cost),
                "current_replacement_value": float(s.current_replacement_value),
                "assessed_count": s.assessed_count,
                "excluded_count": s.excluded_count,
                "calculated_at": s.calculated_at,
            }
        )
    return pd.DataFrame(data)
