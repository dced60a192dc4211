# Intake data models and login-ID derivation
from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Dict, Optional, Union

GENDERS = ("Male", "Female")
FORM_FIELDS = ("name", "dob", "gender", "symptoms")
PENDING = "pending"
DOB_PATTERN = r"^(\d{4}-\d{2}-\d{2})?$"


def validate_field(field_name: str, value: str) -> None:
    """Raise KeyError for unknown fields, ValueError for values the form must never hold"""
    if field_name not in FORM_FIELDS:
        raise KeyError(f"Unknown intake field: {field_name}")
    if field_name == "gender" and value and value not in GENDERS:
        raise ValueError(f"gender must be one of {GENDERS}, got {value!r}")
    if field_name == "dob" and not re.fullmatch(DOB_PATTERN, value):
        raise ValueError(f"dob must be YYYY-MM-DD, got {value!r}")


@dataclass
class IntakeForm:
    """Patient intake form, edited field by field until submission"""
    name: str = ""
    dob: str = ""  # YYYY-MM-DD
    gender: str = ""  # "" until chosen, then "Male" | "Female"
    symptoms: str = ""

    def is_complete(self) -> bool:
        """All four fields filled (and the DOB well-formed) before the form may be submitted"""
        if not all(getattr(self, name).strip() for name in FORM_FIELDS):
            return False
        return re.fullmatch(DOB_PATTERN, self.dob) is not None

    def update(self, field_name: str, value: str) -> None:
        validate_field(field_name, value)
        setattr(self, field_name, value)


@dataclass(frozen=True)
class PatientRecord:
    """Document written to the patients collection. Never read back."""
    name: str
    dob: str
    gender: str
    symptoms: str
    loginId: str
    caseNo: str
    timestamp: str
    status: str = PENDING

    def to_document(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class SubmissionResult:
    loginId: str
    caseNo: str


# Controller states. Each carries only what is valid while in it.

@dataclass(frozen=True)
class Editing:
    form: IntakeForm = field(default_factory=IntakeForm)
    kind: str = field(default="editing", init=False)


@dataclass(frozen=True)
class Submitting:
    form: IntakeForm
    kind: str = field(default="submitting", init=False)


@dataclass(frozen=True)
class Submitted:
    result: SubmissionResult
    kind: str = field(default="submitted", init=False)


IntakeState = Union[Editing, Submitting, Submitted]


def derive_login_id(name: Optional[str], dob: Optional[str]) -> str:
    """
    Login ID = first 3 letters of the trimmed name, uppercased, then day, then month.
    "ann smith", "1990-07-15" -> "ANN1507". Day before month is intentional:
    it matches every login ID already handed out to patients.
    """
    if not name or not dob:
        return ""
    prefix = name.strip()[:3].upper()
    _year, month, day = dob.split("-")
    return f"{prefix}{day}{month}"


def preview_login_id(form: IntakeForm) -> Optional[str]:
    """Live preview while typing: shown once the name has 3+ characters and a DOB is set"""
    if len(form.name) < 3 or not form.dob:
        return None
    return derive_login_id(form.name, form.dob)


def iso_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix, e.g. 2026-10-19T08:15:30.123Z"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")
