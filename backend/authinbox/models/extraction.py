"""
Pydantic models for the AI extraction result.

The model is asked to answer with one of two JSON shapes:

    {"codeExist": 0}
    {"title": "sender@example.com", "code": "123456",
     "topic": "account login verification", "codeExist": 1,
     "classification": "LOGIN"}

ExtractionResult maps the wire names (title / codeExist) onto readable
attribute names and enforces that a positive answer carries every field.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Classification(str, Enum):
    LOGIN = "LOGIN"
    PASSWORD_RESET = "PASSWORD_RESET"
    OTHER = "OTHER"


class GateDecision(str, Enum):
    SUPPRESS = "suppress"
    RELEASE = "release"


# Separators models and senders put inside codes: "04 74 22", "123-456"
_CODE_SEPARATORS = re.compile(r"[\s\-_.·]")


def normalize_code(code: str) -> str:
    """
    Strip formatting separators from a verification code.

    Leading zeros are kept ("04 74 22" -> "047422"). Links are returned
    as-is apart from surrounding whitespace.
    """
    code = code.strip()
    if code.lower().startswith("http"):
        return code
    return _CODE_SEPARATORS.sub("", code)


class ExtractionResult(BaseModel):
    """Validated answer from the extraction model."""
    model_config = {"populate_by_name": True}

    code_exists: bool = Field(alias="codeExist")
    sender_address: Optional[str] = Field(default=None, alias="title")
    code: Optional[str] = None
    topic: Optional[str] = None
    classification: Optional[Classification] = None

    @field_validator("sender_address", "topic", mode="before")
    @classmethod
    def _strip_text(cls, value):
        if value is None:
            return None
        return str(value).strip()

    @field_validator("code", mode="before")
    @classmethod
    def _normalize_code(cls, value):
        if value is None:
            return None
        # A bare JSON number has already lost any leading zero.
        return normalize_code(str(value))

    @field_validator("classification", mode="before")
    @classmethod
    def _coerce_classification(cls, value):
        if value is None or value == "":
            return None
        if isinstance(value, Classification):
            return value
        label = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        if label in Classification.__members__:
            return Classification[label]
        # An unrecognised label is a malformed answer, never a silent release.
        raise ValueError(f"unknown classification {value!r}")

    @model_validator(mode="after")
    def _require_fields_when_code_exists(self):
        if self.code_exists:
            missing = [
                name
                for name, value in (
                    ("title", self.sender_address),
                    ("code", self.code),
                    ("topic", self.topic),
                )
                if not value
            ]
            if missing:
                raise ValueError(
                    f"codeExist=1 but required fields are empty: {', '.join(missing)}"
                )
        return self

    @property
    def requires_gate(self) -> bool:
        """True when the code must pass the repeat gate before release."""
        return self.classification == Classification.PASSWORD_RESET
