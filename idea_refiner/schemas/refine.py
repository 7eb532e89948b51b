from typing import List

from pydantic import BaseModel, Field, StrictStr, field_validator

SCALAR_FIELDS = ("title", "short_description", "problem", "solution")
LIST_FIELDS = ("core_features", "mvp_scope", "suggested_tech_stack", "next_steps")
REQUIRED_FIELDS = SCALAR_FIELDS + LIST_FIELDS

PLACEHOLDER = "Not specified"


class RefineRequest(BaseModel):
    idea: StrictStr = Field(..., description="free-text product idea")

    @field_validator("idea")
    @classmethod
    def idea_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("idea must be a non-empty string")
        return v


class RefinementPlan(BaseModel):
    title: str
    short_description: str
    problem: str
    solution: str
    core_features: List[str] = Field(..., min_length=1)
    mvp_scope: List[str] = Field(..., min_length=1)
    suggested_tech_stack: List[str] = Field(..., min_length=1)
    next_steps: List[str] = Field(..., min_length=1, description="in recommended order")
