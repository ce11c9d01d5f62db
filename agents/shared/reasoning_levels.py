"""
Project Meridian - Reasoning Levels

Presets that control every tunable parameter of the pipeline:
per-agent model overrides, evidence volume, finding counts and the
certainty threshold below which the verifier drops findings.

x-light: minimum everything, for fast testing
light:   reduced scope, lower cost
heavy:   full production quality
x-heavy: maximum reasoning
"""

from typing import Dict, Optional
from pydantic import BaseModel

DEFAULT_REASONING_LEVEL = "x-light"


class ReasoningConfig(BaseModel):
    """Tunable parameters for one reasoning level"""
    label: str
    description: str

    # Model overrides (None = client default)
    classifier_model: Optional[str] = None
    researcher_model: Optional[str] = None
    synthesizer_model: Optional[str] = None
    verifier_model: Optional[str] = None

    # Researcher
    evidence_min_items: int = 2

    # Synthesizer
    total_findings: str = "3-5"
    findings_per_section: str = "1"
    supporting_evidence_min: int = 1
    explanation_length: str = "1 sentence"
    key_stats_count: int = 2

    # Verifier
    methodology_length: str = "1 sentence"
    removal_threshold: int = 0


REASONING_LEVELS: Dict[str, ReasoningConfig] = {
    "x-light": ReasoningConfig(
        label="X-Light",
        description="Fastest - minimal output for testing",
        evidence_min_items=2,
        total_findings="3-5",
        findings_per_section="1",
        supporting_evidence_min=1,
        explanation_length="1 sentence",
        key_stats_count=2,
        methodology_length="1 sentence",
        removal_threshold=0,  # keep all findings regardless of certainty
    ),
    "light": ReasoningConfig(
        label="Light",
        description="Faster - reduced scope, lower cost",
        evidence_min_items=20,
        total_findings="12-18",
        findings_per_section="2-3",
        supporting_evidence_min=2,
        explanation_length="1-2 sentences",
        key_stats_count=4,
        methodology_length="2-3 sentences",
        removal_threshold=25,
    ),
    "heavy": ReasoningConfig(
        label="Heavy",
        description="Full quality - production grade",
        synthesizer_model="deepseek-reasoner",
        verifier_model="deepseek-reasoner",
        evidence_min_items=40,
        total_findings="25-35",
        findings_per_section="3-5",
        supporting_evidence_min=3,
        explanation_length="2-4 sentences",
        key_stats_count=6,
        methodology_length="3-5 sentences",
        removal_threshold=25,
    ),
    "x-heavy": ReasoningConfig(
        label="X-Heavy",
        description="Maximum reasoning - most thorough",
        classifier_model="deepseek-reasoner",
        researcher_model="deepseek-reasoner",
        synthesizer_model="deepseek-reasoner",
        verifier_model="deepseek-reasoner",
        evidence_min_items=60,
        total_findings="35-50",
        findings_per_section="4-7",
        supporting_evidence_min=5,
        explanation_length="3-6 sentences",
        key_stats_count=8,
        methodology_length="5-8 sentences",
        removal_threshold=25,
    ),
}


def get_reasoning_config(level: Optional[str]) -> ReasoningConfig:
    """Preset for level; unknown or missing levels fall back to x-light"""
    return REASONING_LEVELS.get(level or DEFAULT_REASONING_LEVEL, REASONING_LEVELS[DEFAULT_REASONING_LEVEL])
