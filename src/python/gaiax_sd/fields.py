"""Declarative validation and shaping of collected property values.

Each collected value is checked against the first rule in
:data:`FIELD_RULES` whose pattern matches the property name; properties
without a rule fall back to a check derived from their ontology range.
Rules can also reshape a value into the JSON-LD structure the ontology
expects (e.g. wrapping a registration number URL as ``{"id": url}``).
"""

from __future__ import annotations

import fnmatch
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from urllib.parse import urlparse

import pycountry

from gaiax_sd.errors import FieldValidationError

_DID_RE = re.compile(r"^did:[a-z0-9]+:[A-Za-z0-9._:%\-]+(#.+)?$")
_REGION_RE = re.compile(r"^[A-Z]{2}-[A-Z0-9]{1,3}$")


# ---------------------------------------------------------------------------
# Validator variants
# ---------------------------------------------------------------------------


class Validator:
    """Returns None for a valid value or a message describing the problem."""

    def check(self, value: Any) -> str | None:
        raise NotImplementedError


class UrlValidator(Validator):
    def check(self, value):
        if is_url(value):
            return None
        return "value must be a valid URL (e.g. https://example.com/credential)"


class UuidValidator(Validator):
    def check(self, value):
        if is_uuid(value):
            return None
        return "value must be a UUID or urn:uuid identifier"


class DidValidator(Validator):
    def check(self, value):
        if is_did(value):
            return None
        return "value must be a DID (e.g. did:web:example.com)"


class RegionCodeValidator(Validator):
    def check(self, value):
        if not isinstance(value, str) or not _REGION_RE.match(value):
            return "value must be an ISO 3166-2 subdivision code (e.g. LU-CA)"
        if pycountry.subdivisions.get(code=value) is None:
            return f"unknown ISO 3166-2 subdivision code {value}"
        return None


@dataclass(frozen=True)
class NumericRangeValidator(Validator):
    minimum: float | None = None
    maximum: float | None = None
    integer: bool = False

    def check(self, value):
        try:
            number = int(value) if self.integer else float(value)
        except (TypeError, ValueError):
            return "value must be an integer" if self.integer else "value must be a number"
        if self.minimum is not None and number < self.minimum:
            return f"value must be >= {self.minimum}"
        if self.maximum is not None and number > self.maximum:
            return f"value must be <= {self.maximum}"
        return None


@dataclass(frozen=True)
class ChoiceValidator(Validator):
    choices: tuple[str, ...]
    case_sensitive: bool = True

    def check(self, value):
        if isinstance(value, bool):
            value = str(value).lower()
        if not isinstance(value, str):
            return f"value must be one of {', '.join(self.choices)}"
        if self.case_sensitive:
            ok = value in self.choices
        else:
            ok = value.lower() in {c.lower() for c in self.choices}
        return None if ok else f"value must be one of {', '.join(self.choices)}"


@dataclass(frozen=True)
class AnyOfValidator(Validator):
    """Accepts a value if any of the wrapped validators does."""

    validators: tuple[Validator, ...]
    message: str

    def check(self, value):
        for validator in self.validators:
            if validator.check(value) is None:
                return None
        return self.message


@dataclass(frozen=True)
class PatternValidator(Validator):
    regex: str
    message: str

    def check(self, value):
        if isinstance(value, str) and re.fullmatch(self.regex, value):
            return None
        return self.message


class DateTimeValidator(Validator):
    def check(self, value):
        try:
            datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return "value must be an ISO 8601 date-time"
        return None


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


def _wrap_id(value):
    return value if isinstance(value, dict) else {"id": value}


def _wrap_address(value):
    if isinstance(value, dict):
        return value
    return {"gx:countrySubdivisionCode": value}


@dataclass(frozen=True)
class FieldRule:
    pattern: str
    validator: Validator
    shape: Callable[[Any], Any] | None = None

    def matches(self, name: str) -> bool:
        return fnmatch.fnmatchcase(name, self.pattern)


_IDENTIFIER_REF = AnyOfValidator(
    (UrlValidator(), DidValidator(), UuidValidator()),
    "value must be a URL, DID or urn:uuid identifier",
)

FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule("gx:legalRegistrationNumber", UrlValidator(), _wrap_id),
    FieldRule("gx:registrationNumber", UrlValidator(), _wrap_id),
    FieldRule("gx:gaiaxTermsAndConditions", UrlValidator()),
    FieldRule("gx:url", UrlValidator()),
    FieldRule("gx:URL", UrlValidator()),
    FieldRule("gx:openAPI", UrlValidator()),
    FieldRule("gx:headquarterAddress", RegionCodeValidator(), _wrap_address),
    FieldRule("gx:headquartersAddress", RegionCodeValidator(), _wrap_address),
    FieldRule("gx:legalAddress", RegionCodeValidator(), _wrap_address),
    FieldRule("gx:providedBy", _IDENTIFIER_REF),
    FieldRule("gx:*OwnedBy", _IDENTIFIER_REF),
    FieldRule("gx:maintainedBy", _IDENTIFIER_REF),
    FieldRule("gx:producedBy", _IDENTIFIER_REF),
    FieldRule("gx:hostedOn", _IDENTIFIER_REF),
    FieldRule("gx:port", NumericRangeValidator(0, 65535, integer=True)),
    FieldRule("gx:level", ChoiceValidator(("1", "2", "3"))),
    FieldRule("gx:containsPII", ChoiceValidator(("true", "false"), case_sensitive=False)),
    FieldRule(
        "gx:dataAccountExport*",
        ChoiceValidator(("API", "email", "webapp", "other"), case_sensitive=False),
    ),
)

RANGE_VALIDATORS: dict[str, Validator] = {
    "integer": NumericRangeValidator(integer=True),
    "float": NumericRangeValidator(),
    "boolean": ChoiceValidator(("true", "false"), case_sensitive=False),
    "datetime": DateTimeValidator(),
}

REGISTRATION_NUMBER_FORMATS: dict[str, Validator] = {
    "leiCode": PatternValidator(r"[A-Z0-9]{20}", "LEI code must be 20 alphanumeric characters"),
    "vatID": PatternValidator(r"[A-Z]{2}[0-9A-Za-z]{8,12}", "VAT ID must be a country code followed by 8-12 characters"),
    "EORI": PatternValidator(r"[A-Z]{2}[0-9]{8,15}", "EORI must be a country code followed by 8-15 digits"),
    "EUID": PatternValidator(r"[A-Z]{2}[A-Za-z0-9.\-]+", "EUID must be a country code followed by the register identifier"),
    "taxID": PatternValidator(r"[A-Za-z0-9\-]+", "tax ID must be alphanumeric"),
}


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def rule_for(name: str) -> FieldRule | None:
    for rule in FIELD_RULES:
        if rule.matches(name):
            return rule
    return None


def validate_value(name: str, value: Any, range_: str = "string") -> str | None:
    """Return an error message for ``value`` or None if it is acceptable."""
    if isinstance(value, (dict, list)):
        # Structured values are taken as already shaped
        return None
    rule = rule_for(name)
    validator = rule.validator if rule else RANGE_VALIDATORS.get(range_)
    if validator is None:
        return None
    return validator.check(value)


def prepare_value(name: str, value: Any, range_: str = "string") -> Any:
    """Validate ``value`` for property ``name`` and return its shaped form.

    Raises:
        FieldValidationError: If the value does not satisfy its rule.
    """
    message = validate_value(name, value, range_)
    if message is not None:
        raise FieldValidationError(name, message)
    rule = rule_for(name)
    if rule is not None and rule.shape is not None:
        return rule.shape(value)
    return value


def validate_registration_number(registration_type: str, number: str) -> None:
    try:
        validator = REGISTRATION_NUMBER_FORMATS[registration_type]
    except KeyError:
        raise FieldValidationError(
            "registrationType", f"unknown registration type {registration_type!r}"
        ) from None
    message = validator.check(number)
    if message is not None:
        raise FieldValidationError(registration_type, message)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    candidate = value[len("urn:uuid:"):] if value.startswith("urn:uuid:") else value
    try:
        uuid.UUID(candidate)
    except ValueError:
        return False
    return True


def is_did(value: Any) -> bool:
    return isinstance(value, str) and bool(_DID_RE.match(value))
