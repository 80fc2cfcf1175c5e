"""Address validation request/response schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..models.domain import Address, ValidationResult


class AddressRequest(BaseModel):
    street: str = Field(..., min_length=1)
    house_number: str = Field(..., min_length=1)
    house_number_ext: Optional[str] = None
    postal_code: str = Field(..., min_length=4, max_length=8)
    city: str = Field(..., min_length=1)

    @field_validator("postal_code")
    @classmethod
    def _normalize_postal_code(cls, value: str) -> str:
        return "".join(value.split()).upper()

    def to_domain(self) -> Address:
        return Address(
            street=self.street.strip(),
            house_number=self.house_number.strip(),
            postal_code=self.postal_code,
            city=self.city.strip(),
            house_number_ext=self.house_number_ext,
        )


class ValidationResponse(BaseModel):
    is_valid: bool
    confidence: int = Field(..., ge=0, le=100)
    method: str
    message: str = ""
    service_area_id: Optional[str] = None
    service_area_name: Optional[str] = None
    province: Optional[str] = None

    @classmethod
    def from_domain(cls, result: ValidationResult) -> "ValidationResponse":
        return cls.model_validate(result.to_dict())
