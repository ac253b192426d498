from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from svn_review.models import Finding, ReviewResponse, Severity

logger = logging.getLogger(__name__)

# Spans the first "{" through the last "}" when the text mentions "findings".
_FINDINGS_OBJECT = re.compile(r"\{.*\"findings\".*\}", re.DOTALL)

SUMMARY_FALLBACK_CHARS = 500


class _FindingModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    commit_id: str = Field("unknown", validation_alias=AliasChoices("commitId", "commit_id"))
    severity: Severity = Severity.INFO
    category: str = "General"
    title: str = "Untitled finding"
    description: str = ""
    file_path: Optional[str] = Field(None, validation_alias=AliasChoices("filePath", "file_path"))
    line_number: Optional[int] = Field(None, validation_alias=AliasChoices("lineNumber", "line_number"))
    suggestion: Optional[str] = None

    @field_validator("commit_id", "category", "title", "description", mode="before")
    @classmethod
    def _text_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return str(value)

    @field_validator("file_path", "suggestion", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _known_severity(cls, value: Any) -> Severity:
        return Severity.parse(value)

    @field_validator("line_number", mode="before")
    @classmethod
    def _lenient_line_number(cls, value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None


class _ReviewModel(BaseModel):
    findings: List[_FindingModel] = Field(default_factory=list)
    summary: str = "No summary provided"

    @field_validator("findings", mode="before")
    @classmethod
    def _objects_only(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_text(cls, value: Any) -> str:
        return str(value) if value else "No summary provided"


def parse_review_response(content: str) -> ReviewResponse:
    """
    Parse completion text into findings.

    Never raises: text without a usable JSON object yields no findings and the
    first 500 characters of the raw text as the summary.
    """
    match = _FINDINGS_OBJECT.search(content or "")
    if match:
        try:
            review = _ReviewModel.model_validate(json.loads(match.group(0)))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Failed to parse AI response: %s", exc)
        else:
            return ReviewResponse(
                findings=[Finding(**finding.model_dump()) for finding in review.findings],
                summary=review.summary,
            )

    return ReviewResponse(findings=[], summary=(content or "")[:SUMMARY_FALLBACK_CHARS])
