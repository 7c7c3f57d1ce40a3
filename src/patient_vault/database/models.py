"""Data models for the database layer."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from patient_vault.errors import ValidationFailed


def parse_date(value) -> date:
    """Accept a date, datetime, or stored text ('YYYY-MM-DD[ HH:MM:SS...]')."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class Patient:
    id: Optional[int] = None
    first_name: str = ""
    last_name: str = ""
    date_of_birth: Optional[date] = None
    medical_record_number: str = ""
    notes: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def age(self) -> Optional[int]:
        dob = self.date_of_birth
        if dob is None:
            return None
        today = date.today()
        years = today.year - dob.year
        if (today.month, today.day) < (dob.month, dob.day):
            years -= 1
        return max(years, 0)

    def validate(self, today: date | None = None):
        """Raise ValidationFailed for the first invalid field."""
        if not self.first_name.strip():
            raise ValidationFailed("first_name", "First name cannot be empty")
        if not self.last_name.strip():
            raise ValidationFailed("last_name", "Last name cannot be empty")
        if not self.medical_record_number.strip():
            raise ValidationFailed(
                "medical_record_number",
                "Medical record number must be valid",
            )
        if self.date_of_birth is None:
            raise ValidationFailed(
                "date_of_birth", "Date of birth is required"
            )
        if parse_date(self.date_of_birth) > (today or date.today()):
            raise ValidationFailed(
                "date_of_birth", "Date of birth cannot be in the future"
            )

    @classmethod
    def from_row(cls, row) -> "Patient":
        """Build a Patient from a row of the ``patients`` table."""
        return cls(
            id=row["id"],
            first_name=row["firstName"],
            last_name=row["lastName"],
            date_of_birth=parse_date(row["dateOfBirth"]),
            medical_record_number=row["medicalRecordNumber"],
            notes=row["notes"],
        )

    def to_params(self) -> tuple:
        """Column values in ``patients`` insert/update order."""
        return (
            self.first_name,
            self.last_name,
            parse_date(self.date_of_birth).isoformat(),
            self.medical_record_number,
            self.notes,
        )


@dataclass
class StoreMetadata:
    id: int = 1
    last_modified: int = 0
    version: str = "1.0"

    @classmethod
    def from_row(cls, row) -> "StoreMetadata":
        return cls(
            id=row["id"],
            last_modified=row["lastmodified"],
            version=row["dbversion"],
        )
