from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from .models import AIAnalysis

ANALYSIS_SCHEMA_NAME = "social_vault_content_analysis"

# Hand-authored to stay within the JSON Schema subset Structured Outputs accepts.
ANALYSIS_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "summary": {"type": "string"},
        "usage_scenarios": {"type": "array", "items": {"type": "string"}},
        "core_knowledge": {"type": "array", "items": {"type": "string"}},
        "extracted_prompts": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["summary", "usage_scenarios", "core_knowledge", "extracted_prompts"],
}


class AnalysisResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    summary: str
    usage_scenarios: list[str]
    core_knowledge: list[str]
    extracted_prompts: list[str]

    def to_analysis(self) -> AIAnalysis:
        return AIAnalysis.from_mapping(self.model_dump())
