from fci_engine.config.resolution import (
    match_code,
    resolve_component_weight,
    resolve_curve_config,
    resolve_rating_scale,
    resolve_risk_bands,
)
from fci_engine.forecasting.deterioration import DEFAULT_CURVE_CONFIG, DEFAULT_CURVE_TEMPLATES
from fci_engine.models.schemas import ComponentDeteriorationConfig, RatingScale, RiskBands


class TestMatchCode:
    def test_exact_wins(self):
        assert match_code("D30", {"D": 1, "D30": 2}) == 2

    def test_longest_prefix(self):
        assert match_code("D3040", {"D": 1, "D30": 2}) == 2

    def test_no_match(self):
        assert match_code("B30", {"D": 1}) is None
        assert match_code("B30", None) is None


class TestCurveConfig:
    def test_project_override_wins(self, linear_curve):
        override = ComponentDeteriorationConfig(
            project_id="P-1", component_code="D30", design=linear_curve
        )
        resolved = resolve_curve_config("D3040", {"D30": override})
        assert resolved is override

    def test_template_by_prefix(self):
        resolved = resolve_curve_config("D3040")
        assert resolved is DEFAULT_CURVE_TEMPLATES["D30"]

    def test_global_default(self):
        assert resolve_curve_config("G20") is DEFAULT_CURVE_CONFIG

    def test_explicit_layers(self, linear_curve):
        fallback = ComponentDeteriorationConfig(component_code="*", design=linear_curve)
        assert resolve_curve_config("B30", templates={}, global_default=fallback) is fallback


class TestScalesAndBands:
    def test_rating_scale_precedence(self):
        project = RatingScale(name="project", max_value=5)
        template = RatingScale(name="template", max_value=10)
        assert resolve_rating_scale(project, template).name == "project"
        assert resolve_rating_scale(None, template).name == "template"
        assert resolve_rating_scale().name == "percent"

    def test_risk_bands_default(self):
        assert resolve_risk_bands() == RiskBands()
        custom = RiskBands(very_low=0.2, low=0.4, medium=0.6, high=0.8)
        assert resolve_risk_bands(None, None, custom) is custom


class TestComponentWeight:
    def test_default_weight(self):
        assert resolve_component_weight("B30", None) == 1.0

    def test_prefix_weight(self):
        assert resolve_component_weight("D2010", {"D": 0.5, "B30": 2}) == 0.5
