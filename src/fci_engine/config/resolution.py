"""Effective configuration lookup: project override, then template, then global default.

Within each layer an exact component code wins over the longest matching
classification prefix (``D3040`` falls back to ``D30``, then ``D``).
"""

from collections.abc import Mapping
from typing import TypeVar

from fci_engine.models.schemas import ComponentDeteriorationConfig, RatingScale, RiskBands

T = TypeVar("T")


def match_code(code: str, table: Mapping[str, T] | None) -> T | None:
    """Exact match first, then the longest key that prefixes ``code``."""
    if not table:
        return None
    if code in table:
        return table[code]
    prefixes = [key for key in table if code.startswith(key)]
    if not prefixes:
        return None
    return table[max(prefixes, key=len)]


def resolve_curve_config(
    component_code: str,
    project_overrides: Mapping[str, ComponentDeteriorationConfig] | None = None,
    templates: Mapping[str, ComponentDeteriorationConfig] | None = None,
    global_default: ComponentDeteriorationConfig | None = None,
) -> ComponentDeteriorationConfig | None:
    """Return the deterioration config in effect for a component code.

    When ``templates`` and ``global_default`` are omitted the built-in
    UNIFORMAT system curves are used.
    """
    if templates is None or global_default is None:
        from fci_engine.forecasting.deterioration import (
            DEFAULT_CURVE_CONFIG,
            DEFAULT_CURVE_TEMPLATES,
        )

        templates = DEFAULT_CURVE_TEMPLATES if templates is None else templates
        global_default = DEFAULT_CURVE_CONFIG if global_default is None else global_default

    for layer in (project_overrides, templates):
        found = match_code(component_code, layer)
        if found is not None:
            return found
    return global_default


def resolve_rating_scale(
    project_scale: RatingScale | None = None,
    template_scale: RatingScale | None = None,
    global_default: RatingScale | None = None,
) -> RatingScale:
    for candidate in (project_scale, template_scale, global_default):
        if candidate is not None:
            return candidate
    return RatingScale()


def resolve_risk_bands(
    project_bands: RiskBands | None = None,
    template_bands: RiskBands | None = None,
    global_default: RiskBands | None = None,
) -> RiskBands:
    for candidate in (project_bands, template_bands, global_default):
        if candidate is not None:
            return candidate
    return RiskBands()


def resolve_component_weight(
    component_code: str, component_weights: Mapping[str, float] | None
) -> float:
    """Weight for a component from a project's ``componentWeights``; 1.0 when unset."""
    weight = match_code(component_code, component_weights)
    return 1.0 if weight is None else float(weight)
