import pytest

from fci_engine.models.enums import (
    CombinationRule,
    DefectSeverity,
    IssueKind,
    MaintenanceFrequency,
    OperatingEnvironment,
    RiskLevel,
)
from fci_engine.models.schemas import CoFFactors, PoFFactors, RiskBands, RiskWeights
from fci_engine.risk.scorer import RiskScorer, classify, combine, score


class TestCombine:
    def test_product_rule(self):
        assert combine(0.6, 0.4) == pytest.approx(0.24)

    def test_max_rule(self):
        assert combine(0.6, 0.4, CombinationRule.MAX) == 0.6

    def test_weighted_sum_rule(self):
        assert combine(0.6, 0.4, CombinationRule.WEIGHTED_SUM, pof_share=0.75) == pytest.approx(
            0.55
        )


class TestClassify:
    def test_default_scenario_is_medium(self):
        assert classify(0.24) == RiskLevel.MEDIUM

    @pytest.mark.parametrize(
        "value,level",
        [
            (0.0, RiskLevel.VERY_LOW),
            (0.099, RiskLevel.VERY_LOW),
            (0.10, RiskLevel.LOW),
            (0.20, RiskLevel.MEDIUM),
            (0.29, RiskLevel.MEDIUM),
            (0.30, RiskLevel.HIGH),
            (0.35, RiskLevel.HIGH),
            (0.40, RiskLevel.CRITICAL),
            (0.45, RiskLevel.CRITICAL),
            (1.0, RiskLevel.CRITICAL),
        ],
    )
    def test_band_edges(self, value, level):
        assert classify(value) == level

    def test_default_bands_are_even_deciles(self):
        bands = RiskBands()
        bounds = [0.0, bands.very_low, bands.low, bands.medium, bands.high]
        steps = [b - a for a, b in zip(bounds, bounds[1:])]
        assert steps == pytest.approx([0.1] * 4)

    def test_custom_bands(self):
        bands = RiskBands(very_low=0.2, low=0.4, medium=0.6, high=0.8)
        assert classify(0.24, bands) == RiskLevel.LOW

    def test_bands_must_ascend(self):
        with pytest.raises(ValueError):
            RiskBands(very_low=0.3, low=0.2, medium=0.6, high=0.8)


class TestScoreValues:
    def test_scenario_product(self):
        result = RiskScorer().score_values(0.6, 0.4)
        assert result.risk_score == pytest.approx(0.24)
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.rule == CombinationRule.PRODUCT

    def test_rule_recorded(self):
        scorer = RiskScorer(RiskWeights(rule=CombinationRule.MAX))
        result = scorer.score_values(0.6, 0.4)
        assert result.rule == CombinationRule.MAX
        assert result.risk_score == 0.6

    def test_out_of_range_values_clamped_with_warning(self):
        result = RiskScorer().score_values(1.4, 0.5)
        assert result.pof == 1.0
        assert result.issues[0].kind == IssueKind.VALIDATION_WARNING
        assert result.issues[0].field == "pof"


class TestPoF:
    def test_age_ratio(self):
        result = score(PoFFactors(age=10, expected_useful_life=20), CoFFactors(safety=1.0))
        assert result.pof_factors == {"age": 0.5}
        assert result.pof == pytest.approx(0.5)

    def test_age_ratio_capped_at_one(self):
        result = score(PoFFactors(age=40, expected_useful_life=20), CoFFactors(safety=1.0))
        assert result.pof_factors["age"] == 1.0

    def test_weibull_age_for_known_equipment(self):
        result = score(
            PoFFactors(age=20, expected_useful_life=20, equipment_type="HVAC"),
            CoFFactors(safety=1.0),
        )
        # Weibull(beta=2, eta=20) CDF at the scale parameter is 1 - 1/e
        assert result.pof_factors["age"] == pytest.approx(0.6321, abs=1e-4)

    def test_equal_default_weights(self):
        factors = PoFFactors(
            age=10,
            expected_useful_life=20,
            remaining_life_percent=30,
            condition_index=40,
        )
        result = score(factors, CoFFactors(safety=0.5))
        # mean of 0.5, 0.7, 0.6
        assert result.pof == pytest.approx(0.6)

    def test_defect_severity_adjusts_condition(self):
        base = score(PoFFactors(condition_index=60), CoFFactors(safety=1.0))
        major = score(
            PoFFactors(condition_index=60, defect_severity=DefectSeverity.MAJOR),
            CoFFactors(safety=1.0),
        )
        assert base.pof_factors["condition"] == pytest.approx(0.4)
        assert major.pof_factors["condition"] == pytest.approx(0.65)

    def test_deferred_maintenance(self):
        result = score(
            PoFFactors(
                maintenance_frequency=MaintenanceFrequency.SCHEDULED,
                deferred_maintenance_years=2,
            ),
            CoFFactors(safety=1.0),
        )
        assert result.pof_factors["maintenance"] == pytest.approx(0.525)

    def test_environment_and_utilization(self):
        result = score(
            PoFFactors(
                operating_environment=OperatingEnvironment.HARSH, utilization_rate=75
            ),
            CoFFactors(safety=1.0),
        )
        assert result.pof_factors["environment"] == pytest.approx(0.6875)

    def test_out_of_range_inputs_clamped(self):
        result = score(
            PoFFactors(remaining_life_percent=140, condition_index=-5),
            CoFFactors(safety=1.0),
        )
        assert result.pof_factors["remaining_life"] == 0.0
        assert result.pof_factors["condition"] == 1.0
        fields = {i.field for i in result.issues if i.kind == IssueKind.VALIDATION_WARNING}
        assert fields == {"remaining_life_percent", "condition_index"}

    def test_no_factors_is_insufficient_data(self):
        result = score(PoFFactors(), CoFFactors(safety=1.0))
        assert result.pof is None
        assert result.cof == 1.0
        assert result.risk_score is None
        assert result.risk_level is None
        assert any(
            i.kind == IssueKind.INSUFFICIENT_DATA and i.field == "pof"
            for i in result.issues
        )

    def test_no_dimensions_leaves_risk_unknown(self):
        result = score(PoFFactors(condition_index=40), CoFFactors())
        assert result.pof == pytest.approx(0.6)
        assert result.cof is None
        assert result.risk_score is None
        assert [i.field for i in result.issues] == ["cof"]

    def test_custom_weights(self):
        weights = RiskWeights(pof={"age": 3.0, "condition": 1.0})
        result = score(
            PoFFactors(age=20, expected_useful_life=20, condition_index=100),
            CoFFactors(safety=1.0),
            weights=weights,
        )
        assert result.pof == pytest.approx(0.75)

    def test_unknown_weight_rejected(self):
        with pytest.raises(ValueError):
            RiskWeights(pof={"vibration": 1.0})


class TestCoF:
    def test_default_weights(self):
        cof = CoFFactors(
            safety=1.0, operational=0.5, financial=0.5, environmental=0.0, reputational=0.0
        )
        result = score(PoFFactors(condition_index=0), cof)
        # 0.4 + 0.1 + 0.1
        assert result.cof == pytest.approx(0.6)

    def test_notes_carried_through(self):
        cof = CoFFactors(safety=0.8, safety_notes="Occupied floor below roof")
        result = score(PoFFactors(condition_index=50), cof)
        assert result.notes == {"safety": "Occupied floor below roof"}

    def test_missing_dimensions_excluded(self):
        result = score(PoFFactors(condition_index=50), CoFFactors(financial=0.3))
        assert result.cof == pytest.approx(0.3)


class TestDeterminism:
    def test_identical_inputs_identical_output(self):
        pof = PoFFactors(
            age=12,
            expected_useful_life=25,
            remaining_life_percent=52,
            condition_index=61,
            defect_severity=DefectSeverity.MODERATE,
            maintenance_frequency=MaintenanceFrequency.REACTIVE,
            deferred_maintenance_years=1,
            operating_environment=OperatingEnvironment.NORMAL,
            utilization_rate=80,
        )
        cof = CoFFactors(safety=0.7, operational=0.4, financial=0.6)
        first = score(pof, cof)
        for _ in range(5):
            again = score(pof, cof)
            assert again.risk_score == first.risk_score
            assert again.risk_level == first.risk_level
        assert 0.0 <= first.risk_score <= 1.0
