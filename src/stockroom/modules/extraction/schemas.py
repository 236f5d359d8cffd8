from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from stockroom.modules.imports.schemas import ImportHeader


class ExtractedLine(BaseModel):
    line_number: int = Field(ge=1)
    description_original: str
    description_clean: str | None = None
    quantity: Decimal | None = None
    unit: str | None = None
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    tax_rate: Decimal | None = None
    tax_amount: Decimal | None = None

    @field_validator("description_original")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("description is empty")
        return value


class ParsedDocument(BaseModel):
    header: ImportHeader
    lines: list[ExtractedLine] = Field(default_factory=list)
