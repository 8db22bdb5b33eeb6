import logging
from datetime import date, datetime, timezone

import numpy as np

from fci_engine.config.settings import get_settings
from fci_engine.forecasting.deterioration import (
    condition_at,
    remaining_life,
    terminal_condition,
)
from fci_engine.models.enums import CurveType, IssueKind, PredictionMethod
from fci_engine.models.schemas import (
    ComponentContext,
    ComponentDeteriorationConfig,
    ConditionPrediction,
    EngineIssue,
    HistoricalCondition,
    PredictionHistoryEntry,
)

logger = logging.getLogger(__name__)

MIN_DETERIORATION_RATE = 0.5  # condition points per year
MAX_DETERIORATION_RATE = 10.0
DAYS_PER_YEAR = 365.25


def _fractional_year(d: date) -> float:
    return d.toordinal() / DAYS_PER_YEAR


class _Estimate:
    """Intermediate single-method forecast before it is blended or reported."""

    def __init__(
        self,
        method: PredictionMethod,
        condition: float,
        remaining_life: float,
        confidence: float,
        rate: float | None,
        curve_used: CurveType | None = None,
    ):
        self.method = method
        self.condition = condition
        self.remaining_life = remaining_life
        self.confidence = confidence
        self.rate = rate
        self.curve_used = curve_used


class ConditionPredictor:
    """Forecasts condition, remaining life and failure year for a component."""

    def __init__(
        self,
        trend_window: int | None = None,
        failure_threshold: float | None = None,
        model_version: str | None = None,
    ):
        settings = get_settings()
        self.trend_window = trend_window or settings.trend_window
        self.failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else settings.failure_threshold
        )
        self.model_version = model_version or settings.model_version

    @staticmethod
    def data_support(history: list[HistoricalCondition], as_of: date) -> float:
        """0-1 score for how well recent assessments back a curve forecast.

        Up to 0.4 for the number of assessments (saturating at 5), 0.3 for the
        span they cover (saturating at 10 years), and 0.3 for recency, losing
        0.03 per year since the latest assessment.
        """
        if not history:
            return 0.0
        dates = sorted(h.assessed_at for h in history)
        span_years = (dates[-1] - dates[0]).days / DAYS_PER_YEAR
        since_latest = max(0.0, (as_of - dates[-1]).days / DAYS_PER_YEAR)
        count_part = min(40.0, len(dates) / 5 * 40)
        span_part = min(30.0, span_years / 10 * 30)
        recency_part = max(0.0, 30.0 - since_latest * 3)
        return (count_part + span_part + recency_part) / 100

    def _curve_estimate(
        self,
        context: ComponentContext,
        config: ComponentDeteriorationConfig | None,
        history: list[HistoricalCondition],
        as_of: date,
        curve_type: CurveType | None,
    ) -> _Estimate | None:
        if config is None:
            return None
        selected = curve_type or config.active
        curve = config.curve_for(selected)
        if curve is None:
            return None

        age = max(0.0, float(as_of.year - context.install_year))
        condition = condition_at(curve, age)
        life = remaining_life(curve, age)
        rate = condition - condition_at(curve, age + 1)
        confidence = 0.5 + 0.5 * self.data_support(history, as_of)
        return _Estimate(
            PredictionMethod.CURVE_BASED,
            condition,
            life,
            confidence,
            rate,
            curve_used=selected,
        )

    def _trend_estimate(
        self,
        history: list[HistoricalCondition],
        as_of: date,
        threshold: float,
    ) -> _Estimate | None:
        import statsmodels.api as sm

        points = sorted(history, key=lambda h: h.assessed_at)[-self.trend_window :]
        if len({p.assessed_at for p in points}) < 2:
            return None

        x = np.array([_fractional_year(p.assessed_at) for p in points])
        y = np.array([p.condition for p in points], dtype=float)
        fit = sm.OLS(y, sm.add_constant(x, has_constant="add")).fit()

        slope = float(fit.params[1])
        rate = min(max(-slope, MIN_DETERIORATION_RATE), MAX_DETERIORATION_RATE)
        resid_var = float(fit.ssr / fit.df_resid) if fit.df_resid > 0 else 0.0
        resid_std = resid_var**0.5

        n = len(points)
        confidence = (1 - 1 / n) * (1 / (1 + resid_std / 10))

        latest = points[-1]
        elapsed = max(0.0, _fractional_year(as_of) - _fractional_year(latest.assessed_at))
        condition = min(100.0, max(0.0, latest.condition - rate * elapsed))
        life = max(0.0, (condition - threshold) / rate)
        return _Estimate(
            PredictionMethod.HISTORICAL_TREND, condition, life, confidence, rate
        )

    def predict(
        self,
        context: ComponentContext,
        config: ComponentDeteriorationConfig | None,
        history: list[HistoricalCondition] | None = None,
        method: PredictionMethod = PredictionMethod.CURVE_BASED,
        as_of: date | None = None,
        curve_type: CurveType | None = None,
        now: datetime | None = None,
    ) -> ConditionPrediction:
        """Forecast one component.

        A method without the inputs it needs falls back to the other one; when
        neither a curve nor two dated assessments exist, the result is flagged
        ``unavailable`` with zero confidence.
        """
        history = list(history or [])
        as_of = as_of or date.today()
        issues: list[EngineIssue] = []

        curve = config.curve_for(curve_type or config.active) if config else None
        threshold = terminal_condition(curve) if curve else self.failure_threshold

        curve_est = self._curve_estimate(context, config, history, as_of, curve_type)
        trend_est = None
        if method is not PredictionMethod.CURVE_BASED or curve_est is None:
            trend_est = self._trend_estimate(history, as_of, threshold)

        if method is PredictionMethod.CURVE_BASED:
            estimate = curve_est or trend_est
        elif method is PredictionMethod.HISTORICAL_TREND:
            estimate = trend_est or curve_est
        else:
            estimate = self._blend(curve_est, trend_est)

        if estimate is not None and estimate.method is not method:
            issues.append(
                EngineIssue(
                    kind=IssueKind.INSUFFICIENT_DATA,
                    message=(
                        f"{method.value} needs inputs that are missing; "
                        f"used {estimate.method.value}"
                    ),
                    record_id=context.component_code,
                    field="method",
                )
            )

        if estimate is None:
            issues.append(
                EngineIssue(
                    kind=IssueKind.INSUFFICIENT_DATA,
                    message="No deterioration curve and fewer than 2 assessments",
                    record_id=context.component_code,
                )
            )
            result_method = PredictionMethod.UNAVAILABLE
            failure_year = None
            life = None
            condition = None
            confidence = 0.0
            rate = None
            curve_used = None
        else:
            result_method = estimate.method
            life = round(estimate.remaining_life, 2)
            failure_year = as_of.year + round(estimate.remaining_life)
            condition = round(estimate.condition, 2)
            confidence = round(estimate.confidence, 4)
            rate = round(estimate.rate, 4) if estimate.rate is not None else None
            curve_used = estimate.curve_used

        entry = PredictionHistoryEntry(
            project_id=context.project_id,
            component_code=context.component_code,
            predicted_at=now or datetime.now(timezone.utc),
            method=result_method,
            curve_used=curve_used,
            model_version=self.model_version,
            predicted_failure_year=failure_year,
            predicted_remaining_life=life,
            predicted_condition=condition,
            confidence_score=confidence,
        )
        logger.debug(
            "Predicted %s via %s: failure year %s (confidence %.2f)",
            context.component_code,
            result_method.value,
            failure_year,
            confidence,
        )
        return ConditionPrediction(
            component_code=context.component_code,
            method=result_method,
            predicted_failure_year=failure_year,
            predicted_remaining_life=life,
            predicted_condition=condition,
            confidence_score=confidence,
            curve_used=curve_used,
            deterioration_rate=rate,
            issues=issues,
            history=entry,
        )

    @staticmethod
    def _blend(curve_est: _Estimate | None, trend_est: _Estimate | None) -> _Estimate | None:
        if curve_est is None or trend_est is None:
            return curve_est or trend_est
        w_curve = curve_est.confidence
        w_trend = trend_est.confidence
        total = w_curve + w_trend
        if total <= 0:
            w_curve = w_trend = total = 1.0

        def mix(a: float, b: float) -> float:
            return (w_curve * a + w_trend * b) / total

        return _Estimate(
            PredictionMethod.HYBRID,
            mix(curve_est.condition, trend_est.condition),
            mix(curve_est.remaining_life, trend_est.remaining_life),
            mix(curve_est.confidence, trend_est.confidence),
            mix(curve_est.rate or 0.0, trend_est.rate or 0.0),
            curve_used=curve_est.curve_used,
        )


def prediction_accuracy(predicted: float | None, actual: float | None) -> float | None:
    """``1 - |predicted - actual| / actual`` clamped to [0, 1]; None when undefined."""
    if predicted is None or actual is None or actual == 0:
        return None
    return round(max(0.0, min(1.0, 1 - abs(predicted - actual) / abs(actual))), 4)


def record_outcome(
    entry: PredictionHistoryEntry,
    actual_failure_year: int | None = None,
    actual_condition: float | None = None,
    actual_date: date | None = None,
) -> PredictionHistoryEntry:
    """Attach a realized outcome to a past prediction and score it.

    A realized failure year is compared as remaining life measured from the
    prediction year; otherwise the observed condition is compared with the
    predicted condition.
    """
    accuracy = None
    if actual_failure_year is not None and entry.predicted_remaining_life is not None:
        actual_life = actual_failure_year - entry.predicted_at.year
        accuracy = prediction_accuracy(entry.predicted_remaining_life, actual_life)
    elif actual_condition is not None:
        accuracy = prediction_accuracy(entry.predicted_condition, actual_condition)

    return entry.model_copy(
        update={
            "actual_failure_year": actual_failure_year,
            "actual_condition_at_date": actual_condition,
            "actual_date": actual_date,
            "prediction_accuracy": accuracy,
        }
    )


def predict(
    component: ComponentContext,
    curve_config: ComponentDeteriorationConfig | None,
    historical_assessments: list[HistoricalCondition] | None = None,
    method: PredictionMethod = PredictionMethod.CURVE_BASED,
    as_of: date | None = None,
) -> ConditionPrediction:
    return ConditionPredictor().predict(
        component, curve_config, historical_assessments, method, as_of
    )
