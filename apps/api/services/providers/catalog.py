"""Default provider per service type."""

from __future__ import annotations

from typing import Dict, Optional

from services.errors import ServiceUnavailableError
from services.pricing import (
    COMPREHENSIVE_EXPERTISE,
    DAMAGE_ANALYSIS,
    ENGINE_SOUND_ANALYSIS,
    PAINT_ANALYSIS,
    VALUE_ESTIMATION,
    normalize_service_type,
)
from services.providers.base import BaseExpertiseProvider
from services.providers.openai_provider import OpenAIExpertiseProvider
from services.providers.results import (
    ComprehensiveExpertiseResult,
    DamageAnalysisResult,
    EngineSoundResult,
    PaintAnalysisResult,
    ValueEstimationResult,
)

_JSON_RULE = "Answer with a single strict JSON object and nothing else."

PAINT_PROMPT = f"""
You are an automotive paint expert. Inspect the vehicle photos.
Report: overall_score (0-100), paint_condition (excellent|good|fair|poor),
paint_thickness_microns, scratches (count), repainted_panels (list),
recommendations (list of strings), confidence (0-100).
{_JSON_RULE}
"""

DAMAGE_PROMPT = f"""
You are a vehicle damage assessor. Inspect the vehicle photos for scratches,
dents, rust, corrosion and broken parts.
Report: overall_score (0-100), damage_areas (list of {{area, damage_type, severity}}),
estimated_repair_cost (TRY), recommendations (list of strings), confidence (0-100).
{_JSON_RULE}
"""

ENGINE_PROMPT = f"""
You are an engine diagnostics expert working from engine sound recordings.
Report: overall_score (0-100), engine_health (string),
rpm_analysis (object with idle_rpm, max_rpm, stability), detected_issues (list),
recommendations (list of strings), confidence (0-100).
{_JSON_RULE}
"""

VALUE_PROMPT = f"""
You are a used car market analyst for the Turkish market.
Estimate the vehicle's market value from its details and photos.
Report: estimated_value, min_value, max_value, currency ("TRY"),
market_analysis (object), recommendations (list of strings), confidence (0-100).
{_JSON_RULE}
"""

COMPREHENSIVE_PROMPT = f"""
You are a senior vehicle expertise inspector producing a full report.
Cover paint, damage, engine and market value in one pass.
Report: overall_score (0-100), summary, paint, damage, engine, value (objects),
recommendations (list of strings), confidence (0-100).
{_JSON_RULE}
"""

_registry: Dict[str, BaseExpertiseProvider] = {}


def _default_provider(service_type: str) -> Optional[BaseExpertiseProvider]:
    if service_type == PAINT_ANALYSIS:
        return OpenAIExpertiseProvider(service_type=service_type, result_model=PaintAnalysisResult, system_prompt=PAINT_PROMPT)
    if service_type == DAMAGE_ANALYSIS:
        return OpenAIExpertiseProvider(service_type=service_type, result_model=DamageAnalysisResult, system_prompt=DAMAGE_PROMPT)
    if service_type == ENGINE_SOUND_ANALYSIS:
        return OpenAIExpertiseProvider(service_type=service_type, result_model=EngineSoundResult, system_prompt=ENGINE_PROMPT)
    if service_type == VALUE_ESTIMATION:
        return OpenAIExpertiseProvider(service_type=service_type, result_model=ValueEstimationResult, system_prompt=VALUE_PROMPT)
    if service_type == COMPREHENSIVE_EXPERTISE:
        return OpenAIExpertiseProvider(
            service_type=service_type,
            result_model=ComprehensiveExpertiseResult,
            system_prompt=COMPREHENSIVE_PROMPT,
        )
    return None


def register_provider(provider: BaseExpertiseProvider) -> None:
    """Override the provider used for `provider.service_type`."""
    _registry[normalize_service_type(provider.service_type)] = provider


def reset_providers() -> None:
    _registry.clear()


def get_provider(service_type: str) -> BaseExpertiseProvider:
    key = normalize_service_type(service_type)
    provider = _registry.get(key)
    if provider is None:
        provider = _default_provider(key)
        if provider is None:
            raise ServiceUnavailableError(f"No analysis provider for service type {service_type!r}")
        _registry[key] = provider
    return provider
