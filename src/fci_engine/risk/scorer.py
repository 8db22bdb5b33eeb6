import logging

from scipy.stats import weibull_min

from fci_engine.models.enums import (
    CombinationRule,
    DefectSeverity,
    IssueKind,
    MaintenanceFrequency,
    OperatingEnvironment,
    RiskLevel,
)
from fci_engine.models.schemas import (
    COF_DIMENSION_NAMES,
    CoFFactors,
    EngineIssue,
    PoFFactors,
    RiskBands,
    RiskScore,
    RiskWeights,
)

logger = logging.getLogger(__name__)

# Weibull (shape beta, scale eta in years) failure models by equipment type
EQUIPMENT_FAILURE_CURVES: dict[str, tuple[float, float]] = {
    "boiler": (2.5, 25.0),
    "hvac": (2.0, 20.0),
    "chiller": (2.2, 22.0),
    "ice plant": (2.3, 20.0),
    "electrical": (1.8, 30.0),
    "plumbing": (1.5, 35.0),
    "roof": (2.5, 25.0),
    "elevator": (2.0, 25.0),
    "fire protection": (1.2, 30.0),
}

SEVERITY_ADJUSTMENT = {
    DefectSeverity.NONE: -0.125,
    DefectSeverity.MINOR: 0.0,
    DefectSeverity.MODERATE: 0.125,
    DefectSeverity.MAJOR: 0.25,
    DefectSeverity.CRITICAL: 0.375,
}

# Used when a defect severity is known but no condition index is
SEVERITY_ONLY = {
    DefectSeverity.NONE: 0.0,
    DefectSeverity.MINOR: 0.25,
    DefectSeverity.MODERATE: 0.5,
    DefectSeverity.MAJOR: 0.75,
    DefectSeverity.CRITICAL: 1.0,
}

MAINTENANCE_BASE = {
    MaintenanceFrequency.PREDICTIVE: 0.0,
    MaintenanceFrequency.PREVENTIVE: 0.125,
    MaintenanceFrequency.SCHEDULED: 0.375,
    MaintenanceFrequency.REACTIVE: 0.75,
    MaintenanceFrequency.NONE: 1.0,
}
DEFERRED_YEAR_INCREMENT = 0.075

ENVIRONMENT_SCORE = {
    OperatingEnvironment.CONTROLLED: 0.0,
    OperatingEnvironment.NORMAL: 0.25,
    OperatingEnvironment.HARSH: 0.625,
    OperatingEnvironment.EXTREME: 1.0,
}

NEUTRAL_SCORE = 0.5


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def combine(
    pof: float,
    cof: float,
    rule: CombinationRule = CombinationRule.PRODUCT,
    pof_share: float = 0.5,
) -> float:
    """Combine PoF and CoF into a risk score in [0, 1]."""
    match rule:
        case CombinationRule.PRODUCT:
            value = pof * cof
        case CombinationRule.MAX:
            value = max(pof, cof)
        case CombinationRule.WEIGHTED_SUM:
            value = pof_share * pof + (1 - pof_share) * cof
    return round(_clamp(value), 4)


def classify(score: float, bands: RiskBands | None = None) -> RiskLevel:
    """Band a risk score. Each threshold is the exclusive upper bound of its level."""
    bands = bands or RiskBands()
    if score < bands.very_low:
        return RiskLevel.VERY_LOW
    if score < bands.low:
        return RiskLevel.LOW
    if score < bands.medium:
        return RiskLevel.MEDIUM
    if score < bands.high:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


class RiskScorer:
    """PoF x CoF risk scoring with configurable weights and bands."""

    def __init__(self, weights: RiskWeights | None = None, bands: RiskBands | None = None):
        self.weights = weights or RiskWeights()
        self.bands = bands or RiskBands()

    def _bounded(
        self,
        value: float,
        field: str,
        low: float,
        high: float,
        issues: list[EngineIssue],
        record_id: str | None,
    ) -> float:
        if low <= value <= high:
            return value
        clamped = _clamp(value, low, high)
        issues.append(
            EngineIssue(
                kind=IssueKind.VALIDATION_WARNING,
                message=f"{field}={value} outside [{low}, {high}]; clamped to {clamped}",
                record_id=record_id,
                field=field,
            )
        )
        return clamped

    def pof_factors(
        self,
        factors: PoFFactors,
        issues: list[EngineIssue],
        record_id: str | None = None,
    ) -> dict[str, float]:
        """Normalize each available PoF input to [0, 1]. Missing inputs are omitted."""
        scores: dict[str, float] = {}

        curve = EQUIPMENT_FAILURE_CURVES.get((factors.equipment_type or "").lower())
        if factors.age is not None and curve is not None:
            beta, eta = curve
            scores["age"] = float(weibull_min.cdf(factors.age, beta, scale=eta))
        elif factors.age is not None and factors.expected_useful_life:
            scores["age"] = _clamp(factors.age / factors.expected_useful_life)

        if factors.remaining_life_percent is not None:
            rlp = self._bounded(
                factors.remaining_life_percent,
                "remaining_life_percent",
                0.0,
                100.0,
                issues,
                record_id,
            )
            scores["remaining_life"] = 1 - rlp / 100

        if factors.condition_index is not None:
            ci = self._bounded(
                factors.condition_index, "condition_index", 0.0, 100.0, issues, record_id
            )
            adjustment = SEVERITY_ADJUSTMENT.get(factors.defect_severity, 0.0)
            scores["condition"] = _clamp(1 - ci / 100 + adjustment)
        elif factors.defect_severity is not None:
            scores["condition"] = SEVERITY_ONLY[factors.defect_severity]

        if (
            factors.maintenance_frequency is not None
            or factors.deferred_maintenance_years is not None
        ):
            base = MAINTENANCE_BASE.get(factors.maintenance_frequency, NEUTRAL_SCORE)
            years = factors.deferred_maintenance_years or 0.0
            if years < 0:
                years = self._bounded(
                    years, "deferred_maintenance_years", 0.0, float("inf"), issues, record_id
                )
            scores["maintenance"] = _clamp(base + DEFERRED_YEAR_INCREMENT * years)

        parts = []
        if factors.operating_environment is not None:
            parts.append(ENVIRONMENT_SCORE[factors.operating_environment])
        if factors.utilization_rate is not None:
            utilization = self._bounded(
                factors.utilization_rate, "utilization_rate", 0.0, 100.0, issues, record_id
            )
            parts.append(utilization / 100)
        if parts:
            scores["environment"] = sum(parts) / len(parts)

        return scores

    def cof_dimensions(
        self,
        factors: CoFFactors,
        issues: list[EngineIssue],
        record_id: str | None = None,
    ) -> dict[str, float]:
        dimensions = {}
        for name in COF_DIMENSION_NAMES:
            value = getattr(factors, name)
            if value is None:
                continue
            dimensions[name] = self._bounded(value, name, 0.0, 1.0, issues, record_id)
        return dimensions

    @staticmethod
    def _weighted(
        values: dict[str, float], weights: dict[str, float]
    ) -> float | None:
        total_weight = sum(weights.get(name, 0.0) for name in values)
        if total_weight <= 0:
            return None
        total = sum(values[name] * weights.get(name, 0.0) for name in values)
        return _clamp(total / total_weight)

    def score(
        self,
        pof_factors: PoFFactors,
        cof_factors: CoFFactors,
        record_id: str | None = None,
    ) -> RiskScore:
        """Score one assessment. Identical inputs always give identical output."""
        issues: list[EngineIssue] = []
        pof_scores = self.pof_factors(pof_factors, issues, record_id)
        cof_scores = self.cof_dimensions(cof_factors, issues, record_id)

        pof = self._weighted(pof_scores, self.weights.pof)
        if pof is None:
            issues.append(
                EngineIssue(
                    kind=IssueKind.INSUFFICIENT_DATA,
                    message="No probability-of-failure factors supplied; risk is unknown",
                    record_id=record_id,
                    field="pof",
                )
            )
        cof = self._weighted(cof_scores, self.weights.cof)
        if cof is None:
            issues.append(
                EngineIssue(
                    kind=IssueKind.INSUFFICIENT_DATA,
                    message="No consequence-of-failure dimensions supplied; risk is unknown",
                    record_id=record_id,
                    field="cof",
                )
            )

        notes = {
            name: getattr(cof_factors, f"{name}_notes")
            for name in COF_DIMENSION_NAMES
            if getattr(cof_factors, f"{name}_notes")
        }
        if pof is None or cof is None:
            result = RiskScore(
                pof=None if pof is None else round(pof, 4),
                cof=None if cof is None else round(cof, 4),
                risk_score=None,
                risk_level=None,
                rule=self.weights.rule,
                pof_factors={},
                cof_dimensions={},
                issues=issues,
            )
        else:
            result = self.score_values(pof, cof, issues)
        result.pof_factors = {k: round(v, 4) for k, v in pof_scores.items()}
        result.cof_dimensions = {k: round(v, 4) for k, v in cof_scores.items()}
        result.notes = notes
        for issue in issues:
            logger.debug("Risk scoring issue for %s: %s", record_id, issue.message)
        return result

    def score_values(
        self, pof: float, cof: float, issues: list[EngineIssue] | None = None
    ) -> RiskScore:
        """Score already-normalized PoF and CoF values."""
        issues = issues if issues is not None else []
        pof = round(self._bounded(pof, "pof", 0.0, 1.0, issues, None), 4)
        cof = round(self._bounded(cof, "cof", 0.0, 1.0, issues, None), 4)
        risk = combine(pof, cof, self.weights.rule, self.weights.pof_share)
        return RiskScore(
            pof=pof,
            cof=cof,
            risk_score=risk,
            risk_level=classify(risk, self.bands),
            rule=self.weights.rule,
            pof_factors={},
            cof_dimensions={},
            issues=issues,
        )


def score(
    pof_factors: PoFFactors,
    cof_factors: CoFFactors,
    weights: RiskWeights | None = None,
    bands: RiskBands | None = None,
) -> RiskScore:
    return RiskScorer(weights, bands).score(pof_factors, cof_factors)
