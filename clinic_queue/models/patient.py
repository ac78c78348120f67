"""Patient data models."""

from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator


@dataclass
class Patient:
    """Canonical patient record, owned by the registry."""

    id: str
    name: str
    phone: str
    created_at: datetime
    updated_at: datetime
    email: str | None = None
    birth_date: date | None = None
    gender: str | None = None
    address: str | None = None

    def summary(self) -> "PatientSummary":
        """Return the fields joined onto visits."""
        return PatientSummary(id=self.id, name=self.name, phone=self.phone, email=self.email)


@dataclass(frozen=True)
class PatientSummary:
    """Live patient join attached to a visit."""

    id: str
    name: str
    phone: str
    email: str | None = None


@dataclass
class PatientWithStats:
    """Patient annotated with its visit history."""

    patient: Patient
    visit_count: int = 0
    last_visit_date: datetime | None = None


@dataclass
class RegistryStats:
    """Aggregates shown above the patient list."""

    total: int = 0
    new_today: int = 0
    with_visits: int = 0


def _clean_optional(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    return v or None


class PatientCreate(BaseModel):
    """Input for registering a patient."""

    name: str = Field(..., max_length=200, examples=["Ahmed Benali"])
    phone: str = Field(..., max_length=40, examples=["0555123456"])
    email: str | None = Field(default=None, max_length=254)
    birth_date: date | None = None
    gender: str | None = Field(default=None, max_length=40)
    address: str | None = Field(default=None, max_length=500)

    @field_validator("name", "phone")
    @classmethod
    def validate_required(cls, v: str) -> str:
        """Required text must not be blank."""
        if not v or v.isspace():
            raise ValueError("Field cannot be empty or whitespace only")
        return v.strip()

    @field_validator("email", "gender", "address")
    @classmethod
    def validate_optional(cls, v: str | None) -> str | None:
        return _clean_optional(v)


class PatientUpdate(BaseModel):
    """Partial patient edit; only fields explicitly set are applied."""

    name: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=40)
    email: str | None = Field(default=None, max_length=254)
    birth_date: date | None = None
    gender: str | None = Field(default=None, max_length=40)
    address: str | None = Field(default=None, max_length=500)

    @field_validator("name", "phone")
    @classmethod
    def validate_required(cls, v: str | None) -> str:
        """Name and phone can be changed but never cleared."""
        if v is None or not v.strip():
            raise ValueError("Field cannot be empty or whitespace only")
        return v.strip()

    @field_validator("email", "gender", "address")
    @classmethod
    def validate_optional(cls, v: str | None) -> str | None:
        return _clean_optional(v)

    def changes(self) -> dict:
        """Return only the fields the caller set."""
        return self.model_dump(exclude_unset=True)
