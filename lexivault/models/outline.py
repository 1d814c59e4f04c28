"""Schema for outline responses returned by the recognition service."""
from typing import List

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class OutlineItem(BaseModel):
    """A single structural header detected in a document."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    label: str = Field(..., min_length=1)
    level: int = Field(..., ge=1)
    target_page: int = Field(..., ge=1, alias="targetPage")

    @field_validator("label")
    @classmethod
    def strip_label(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("label cannot be blank")
        return cleaned


OutlineAdapter = TypeAdapter(List[OutlineItem])
