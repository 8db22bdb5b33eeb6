import numpy as np
from scipy.optimize import brentq

from fci_engine.errors import InvalidCurveParameters
from fci_engine.models.enums import CurveType, InterpolationMode
from fci_engine.models.schemas import (
    ComponentDeteriorationConfig,
    CurveEvaluation,
    DeteriorationCurve,
    ExponentialShape,
    LinearShape,
    PolynomialShape,
)

# Samples across the service life used for the monotonicity check
_VALIDATION_SAMPLES = 401
_ROOT_SAMPLES = 1001
_TOLERANCE = 1e-9
_ROOT_OFFSET = 1e-7


def _shape_values(curve: DeteriorationCurve, x: np.ndarray) -> np.ndarray:
    """Unclamped condition at normalized age x in [0, 1]."""
    shape = curve.shape
    if isinstance(shape, LinearShape):
        knots = np.linspace(0.0, 1.0, len(shape.points))
        return np.interp(x, knots, np.asarray(shape.points, dtype=float))
    if isinstance(shape, PolynomialShape):
        return np.polynomial.polynomial.polyval(x, shape.coefficients)
    # Normalized so C(0) = initial and C(1) = terminal
    k = shape.rate
    decay = (np.exp(-k * x) - np.exp(-k)) / (1.0 - np.exp(-k))
    return shape.terminal + (shape.initial - shape.terminal) * decay


def _condition_array(curve: DeteriorationCurve, ages: np.ndarray) -> np.ndarray:
    x = np.clip(np.asarray(ages, dtype=float) / curve.service_life, 0.0, 1.0)
    values = _shape_values(curve, x)
    return np.clip(values, curve.min_condition, curve.max_condition)


def validate_curve(curve: DeteriorationCurve) -> None:
    """Reject curves whose clamped condition rises anywhere over the service life.

    Raises:
        InvalidCurveParameters: scale bounds inverted, or condition not
            monotonically non-increasing across the sampled domain.
    """
    if curve.max_condition <= curve.min_condition:
        raise InvalidCurveParameters(
            f"Curve '{curve.name}': max_condition must exceed min_condition",
            field="max_condition",
            value=curve.max_condition,
        )

    ages = np.linspace(0.0, curve.service_life, _VALIDATION_SAMPLES)
    values = _condition_array(curve, ages)
    if not np.all(np.isfinite(values)):
        raise InvalidCurveParameters(
            f"Curve '{curve.name}' produces non-finite conditions",
            field="shape",
            value=curve.shape.model_dump(),
        )

    rises = np.diff(values) > _TOLERANCE
    if rises.any():
        first = int(np.argmax(rises))
        raise InvalidCurveParameters(
            f"Curve '{curve.name}' condition increases near age "
            f"{ages[first + 1]:.2f} years ({values[first]:.3f} -> {values[first + 1]:.3f})",
            field="shape",
            value=curve.shape.model_dump(),
        )


def condition_at(curve: DeteriorationCurve, age_years: float) -> float:
    """Condition on the curve's scale at ``age_years``.

    Ages past the service life return the terminal value; age 0 returns the
    initial value.
    """
    if age_years < 0:
        raise ValueError(f"Age must be non-negative, got {age_years}")
    return float(_condition_array(curve, np.array([age_years]))[0])


def terminal_condition(curve: DeteriorationCurve) -> float:
    return condition_at(curve, curve.service_life)


def remaining_life(
    curve: DeteriorationCurve,
    age_years: float,
    failure_threshold: float | None = None,
) -> float:
    """Years from ``age_years`` until the curve reaches ``failure_threshold``.

    The threshold defaults to the curve's terminal value, so a linear curve
    yields ``service_life - age``; a curve that bottoms out early yields less.
    If the threshold is never reached inside the service life, the end of
    service life is used.
    """
    if age_years < 0:
        raise ValueError(f"Age must be non-negative, got {age_years}")
    threshold = (
        terminal_condition(curve) if failure_threshold is None else failure_threshold
    )
    life = curve.service_life
    if age_years >= life:
        return 0.0
    if condition_at(curve, age_years) <= threshold + _TOLERANCE:
        return 0.0

    ages = np.linspace(age_years, life, _ROOT_SAMPLES)
    values = _condition_array(curve, ages)
    crossed = np.nonzero(values <= threshold + _TOLERANCE)[0]
    if crossed.size == 0:
        return round(life - age_years, 4)

    hi = ages[crossed[0]]
    lo = ages[crossed[0] - 1]

    # Offset keeps the root at the start of a plateau sitting exactly on the threshold
    def _gap(t: float) -> float:
        return condition_at(curve, t) - threshold - _ROOT_OFFSET

    if _gap(lo) <= 0:
        failure_age = lo
    elif _gap(hi) >= 0:
        failure_age = hi
    else:
        failure_age = brentq(_gap, lo, hi, xtol=1e-8)
    return round(max(0.0, failure_age - age_years), 4)


def evaluate(
    curve: DeteriorationCurve,
    age_years: float,
    failure_threshold: float | None = None,
) -> CurveEvaluation:
    """Evaluate a curve at an age: condition value plus shape-adjusted remaining life."""
    return CurveEvaluation(
        curve_name=curve.name,
        curve_type=curve.curve_type,
        age_years=age_years,
        condition=round(condition_at(curve, age_years), 4),
        remaining_life=remaining_life(curve, age_years, failure_threshold),
    )


def from_parameters(
    name: str,
    mode: InterpolationMode | str,
    parameters: list[float | None],
    service_life: float,
    curve_type: CurveType = CurveType.DESIGN,
    min_condition: float = 0.0,
    max_condition: float = 100.0,
    curve_id: str | None = None,
) -> DeteriorationCurve:
    """Build a curve from the flat ``param1..param6`` storage shape.

    linear: param1..paramN are condition points spread over the service life.
    polynomial: param1..paramN are coefficients c0..c5 in normalized age.
    exponential: param1 = initial, param2 = terminal, param3 = decay rate.
    """
    values = [p for p in parameters if p is not None]
    if len(values) > 6:
        raise InvalidCurveParameters(
            f"Curve '{name}' has {len(values)} parameters; at most 6 are allowed",
            field="parameters",
            value=parameters,
        )

    try:
        mode = InterpolationMode(mode)
    except ValueError:
        raise InvalidCurveParameters(
            f"Curve '{name}' has unknown mode {mode!r}",
            field="mode",
            value=mode,
        ) from None
    if mode is InterpolationMode.LINEAR:
        if len(values) < 2:
            raise InvalidCurveParameters(
                f"Linear curve '{name}' needs at least 2 points",
                field="parameters",
                value=parameters,
            )
        shape = LinearShape(points=values)
    elif mode is InterpolationMode.POLYNOMIAL:
        if not values:
            raise InvalidCurveParameters(
                f"Polynomial curve '{name}' needs at least 1 coefficient",
                field="parameters",
                value=parameters,
            )
        shape = PolynomialShape(coefficients=values)
    else:
        if len(values) != 3 or values[2] <= 0:
            raise InvalidCurveParameters(
                f"Exponential curve '{name}' needs initial, terminal and a positive rate",
                field="parameters",
                value=parameters,
            )
        shape = ExponentialShape(initial=values[0], terminal=values[1], rate=values[2])

    return DeteriorationCurve(
        id=curve_id,
        name=name,
        curve_type=curve_type,
        service_life=service_life,
        min_condition=min_condition,
        max_condition=max_condition,
        shape=shape,
    )


def curve_parameters(curve: DeteriorationCurve) -> list[float | None]:
    """Flatten a curve back to six parameter slots (unused slots are None)."""
    shape = curve.shape
    if isinstance(shape, LinearShape):
        values = list(shape.points)
    elif isinstance(shape, PolynomialShape):
        values = list(shape.coefficients)
    else:
        values = [shape.initial, shape.terminal, shape.rate]
    return values + [None] * (6 - len(values))


def generate_curve_data(
    curve: DeteriorationCurve, install_year: int, years_to_project: int = 30
) -> list[dict]:
    """Yearly condition points from install year, for charting."""
    ages = np.arange(0, years_to_project + 1, dtype=float)
    values = _condition_array(curve, ages)
    return [
        {"year": install_year + int(age), "condition": round(float(value), 2)}
        for age, value in zip(ages, values)
    ]


def _linear(name, curve_type, points, service_life=25.0) -> DeteriorationCurve:
    return DeteriorationCurve(
        name=name,
        curve_type=curve_type,
        service_life=service_life,
        shape=LinearShape(points=points),
    )


def _template(code: str, service_life: float, best, design, worst):
    return ComponentDeteriorationConfig(
        component_code=code,
        best=_linear(f"{code} best", CurveType.BEST, best, service_life),
        design=_linear(f"{code} design", CurveType.DESIGN, design, service_life),
        worst=_linear(f"{code} worst", CurveType.WORST, worst, service_life),
    )


# Built-in UNIFORMAT system curves; six condition points over the service life
DEFAULT_CURVE_TEMPLATES: dict[str, ComponentDeteriorationConfig] = {
    "B20": _template(  # exterior enclosure
        "B20",
        40.0,
        [100, 98, 96, 94, 92, 90],
        [100, 95, 90, 85, 80, 75],
        [100, 92, 84, 76, 68, 60],
    ),
    "B30": _template(  # roofing
        "B30",
        25.0,
        [100, 95, 90, 85, 80, 75],
        [100, 90, 80, 70, 60, 50],
        [100, 85, 70, 55, 40, 25],
    ),
    "D20": _template(  # plumbing
        "D20",
        35.0,
        [100, 96, 92, 88, 84, 80],
        [100, 92, 84, 76, 68, 60],
        [100, 88, 76, 64, 52, 40],
    ),
    "D30": _template(  # HVAC
        "D30",
        20.0,
        [100, 93, 86, 79, 72, 65],
        [100, 88, 76, 64, 52, 40],
        [100, 83, 66, 49, 32, 15],
    ),
    "D50": _template(  # electrical
        "D50",
        30.0,
        [100, 94, 88, 82, 76, 70],
        [100, 90, 80, 70, 60, 50],
        [100, 86, 72, 58, 44, 30],
    ),
}

DEFAULT_CURVE_CONFIG = _template(
    "default",
    25.0,
    [100, 95, 90, 85, 80, 75],
    [100, 90, 80, 70, 60, 50],
    [100, 85, 70, 55, 40, 25],
)
