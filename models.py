from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Conclusion(str, Enum):
    SUCCESS = "success"
    NEUTRAL = "neutral"
    FAILURE = "failure"


class Diagnostic(BaseModel):
    """One finding reported by a static-analysis tool."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1)
    line: int = Field(ge=1)
    end_line: Optional[int] = None
    severity: str
    message: str
    rule: Optional[str] = None

    @field_validator("severity")
    @classmethod
    def _lower_severity(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="before")
    @classmethod
    def _default_end_line(cls, data):
        if isinstance(data, dict) and data.get("end_line") is None and "line" in data:
            data = {**data, "end_line": data["line"]}
        return data

    @model_validator(mode="after")
    def _check_range(self):
        if self.end_line < self.line:
            raise ValueError(f"end_line {self.end_line} is before line {self.line}")
        return self


class CheckRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    installation_id: int
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    sha: str = Field(min_length=1)
    pr_number: Optional[int] = None
    name: Optional[str] = None
    diagnostics: Tuple[Diagnostic, ...]


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    conclusion: Conclusion
    reported_count: int
    filtered_count: int
    check_run_url: Optional[str] = None
