"""Record validation against the feature schema.

Validation never raises for malformed values: every problem is reported in the
returned :class:`ValidationResult`. Fields not declared by the schema are
ignored so that clients may send extra keys.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .schema import FeatureSchema, FeatureSpec, normalize_category

logger = logging.getLogger(__name__)

NOT_IN_DOMAIN = "not_in_domain"
OUT_OF_RANGE = "out_of_range"
TYPE_MISMATCH = "type_mismatch"


@dataclass(frozen=True)
class InvalidField:
    field: str
    reason: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "reason": self.reason, "value": self.value}


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    missing_fields: List[str] = field(default_factory=list)
    invalid_fields: List[InvalidField] = field(default_factory=list)
    message: str = ""

    def reasons_for(self, name: str) -> List[str]:
        return [entry.reason for entry in self.invalid_fields if entry.field == name]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "missing_fields": list(self.missing_fields),
            "invalid_fields": [entry.to_dict() for entry in self.invalid_fields],
            "message": self.message,
        }


def is_absent(value: Any) -> bool:
    """``None`` and float NaN both count as an absent value."""
    return value is None or (isinstance(value, float) and math.isnan(value))


def coerce_numeric(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, or ``None`` if it cannot be read as one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _check_categorical(spec: FeatureSpec, value: Any) -> Optional[str]:
    candidate = normalize_category(value)
    try:
        if candidate in spec.allowed_values:
            return None
    except TypeError:
        return TYPE_MISMATCH
    # numeric codes sent as strings, e.g. "2" for a declared category 2
    if isinstance(candidate, str):
        number = coerce_numeric(candidate)
        if number is not None and normalize_category(number) in spec.allowed_values:
            return None
    return NOT_IN_DOMAIN


def _check_numeric(spec: FeatureSpec, value: Any) -> Optional[str]:
    number = coerce_numeric(value)
    if number is None:
        return TYPE_MISMATCH
    if spec.min_value is not None and number < spec.min_value:
        return OUT_OF_RANGE
    if spec.max_value is not None and number > spec.max_value:
        return OUT_OF_RANGE
    return None


def validate(record: Any, schema: FeatureSchema) -> ValidationResult:
    """Check ``record`` against ``schema``; see module docstring."""
    if not isinstance(record, Mapping):
        logger.debug("Record of type %s treated as empty", type(record).__name__)
        record = {}

    missing: List[str] = []
    invalid: List[InvalidField] = []

    for spec in schema:
        value = record.get(spec.name)
        if is_absent(value):
            if spec.required:
                missing.append(spec.name)
            continue

        if spec.is_categorical:
            reason = _check_categorical(spec, value)
        else:
            reason = _check_numeric(spec, value)
        if reason is not None:
            invalid.append(InvalidField(field=spec.name, reason=reason, value=value))

    is_valid = not missing and not invalid
    if is_valid:
        message = "Data validation successful"
    else:
        parts = []
        if missing:
            parts.append(f"missing required field(s): {', '.join(missing)}")
        if invalid:
            parts.append(
                "invalid field(s): "
                + ", ".join(f"{entry.field} ({entry.reason})" for entry in invalid)
            )
        message = "Data validation failed: " + "; ".join(parts)

    return ValidationResult(
        is_valid=is_valid,
        missing_fields=missing,
        invalid_fields=invalid,
        message=message,
    )
