"""Minimum result contracts per expertise service.

Providers may return more fields; these are the ones a report cannot be
completed without.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ExpertiseResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    recommendations: List[str] = Field(default_factory=list)


class PaintAnalysisResult(_ExpertiseResult):
    overall_score: float = Field(ge=0, le=100)
    paint_condition: str  # excellent, good, fair, poor
    paint_thickness_microns: Optional[float] = None
    scratches: Optional[int] = None
    repainted_panels: List[str] = Field(default_factory=list)


class DamageArea(BaseModel):
    model_config = ConfigDict(extra="allow")

    area: str
    damage_type: str
    severity: str  # minor, moderate, severe


class DamageAnalysisResult(_ExpertiseResult):
    overall_score: float = Field(ge=0, le=100)
    damage_areas: List[DamageArea]
    estimated_repair_cost: Optional[float] = Field(default=None, ge=0)


class EngineSoundResult(_ExpertiseResult):
    overall_score: float = Field(ge=0, le=100)
    engine_health: str
    rpm_analysis: Dict[str, Any]
    detected_issues: List[Dict[str, Any]] = Field(default_factory=list)


class ValueEstimationResult(_ExpertiseResult):
    estimated_value: float = Field(gt=0)
    min_value: Optional[float] = Field(default=None, gt=0)
    max_value: Optional[float] = Field(default=None, gt=0)
    currency: str = "TRY"
    market_analysis: Dict[str, Any] = Field(default_factory=dict)


class ComprehensiveExpertiseResult(_ExpertiseResult):
    overall_score: float = Field(ge=0, le=100)
    summary: str
    paint: Optional[Dict[str, Any]] = None
    damage: Optional[Dict[str, Any]] = None
    engine: Optional[Dict[str, Any]] = None
    value: Optional[Dict[str, Any]] = None
