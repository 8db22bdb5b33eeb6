from enum import Enum


class ConditionRating(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    NOT_ASSESSED = "not_assessed"


class AggregationLevel(str, Enum):
    COMPONENT = "component"
    SYSTEM = "system"
    BUILDING = "building"
    PORTFOLIO = "portfolio"


class CurveType(str, Enum):
    BEST = "best"
    DESIGN = "design"
    WORST = "worst"


class InterpolationMode(str, Enum):
    LINEAR = "linear"
    POLYNOMIAL = "polynomial"
    EXPONENTIAL = "exponential"


class RiskLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CombinationRule(str, Enum):
    PRODUCT = "product"
    MAX = "max"
    WEIGHTED_SUM = "weighted_sum"


class DefectSeverity(str, Enum):
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class MaintenanceFrequency(str, Enum):
    NONE = "none"
    REACTIVE = "reactive"
    SCHEDULED = "scheduled"
    PREVENTIVE = "preventive"
    PREDICTIVE = "predictive"


class OperatingEnvironment(str, Enum):
    CONTROLLED = "controlled"
    NORMAL = "normal"
    HARSH = "harsh"
    EXTREME = "extreme"


class PredictionMethod(str, Enum):
    CURVE_BASED = "curve_based"
    HISTORICAL_TREND = "historical_trend"
    HYBRID = "hybrid"
    UNAVAILABLE = "unavailable"


class StrategyType(str, Enum):
    REPLACE = "replace"
    REHABILITATE = "rehabilitate"
    DEFER = "defer"
    DO_NOTHING = "do_nothing"


class BudgetType(str, Enum):
    HARD = "hard"
    SOFT = "soft"


class BudgetPeriod(str, Enum):
    ANNUAL = "annual"
    TOTAL = "total"


class OptimizationGoal(str, Enum):
    MINIMIZE_COST = "minimize_cost"
    MAXIMIZE_CI = "maximize_ci"
    MAXIMIZE_ROI = "maximize_roi"
    MINIMIZE_RISK = "minimize_risk"


class ScenarioStatus(str, Enum):
    DRAFT = "draft"
    OPTIMIZED = "optimized"
    APPROVED = "approved"
    IMPLEMENTED = "implemented"


class SkipReason(str, Enum):
    OVER_BUDGET = "over_budget"
    DEFERRED_BEYOND_HORIZON = "deferred_beyond_horizon"
    OUTSIDE_HORIZON = "outside_horizon"
    ALTERNATIVE_SELECTED = "alternative_selected"
    NO_ACTION = "no_action"
    NOT_COST_EFFECTIVE = "not_cost_effective"
    INVALID = "invalid"
    CANDIDATE_CAP = "candidate_cap"


class IssueKind(str, Enum):
    UNDEFINED_RATIO = "UndefinedRatio"
    INSUFFICIENT_DATA = "InsufficientData"
    VALIDATION_WARNING = "ValidationWarning"
