"""Prediction entity and its enumerations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Timezone-aware UTC copy of ``moment``; naive values are taken as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class ClassLabel(str, Enum):
    POSITIVE = "Good Subject"
    NEGATIVE = "Bad Subject"

    @property
    def outcome(self) -> str:
        if self is ClassLabel.POSITIVE:
            return "Completed treatment"
        return "Did not complete treatment"

    @classmethod
    def parse(cls, value: Any) -> "ClassLabel":
        """Accept the enum, its display name, its member name or a 1/0 outcome."""
        if isinstance(value, ClassLabel):
            return value
        if isinstance(value, bool):
            return cls.POSITIVE if value else cls.NEGATIVE
        if isinstance(value, (int, float)) and value in (0, 1):
            return cls.POSITIVE if value == 1 else cls.NEGATIVE
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown class label: {value!r}")


class ConfidenceBand(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Prediction:
    """One logged prediction.

    ``prediction_id`` and ``timestamp`` are assigned by the history store when
    the prediction is appended; a prediction returned to a caller always has
    both set.
    """

    model_id: str
    class_label: ClassLabel
    probability: float
    confidence_band: ConfidenceBand
    input_snapshot: Mapping[str, Any] = field(default_factory=dict)
    prediction_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    model_name: Optional[str] = None

    @property
    def is_recorded(self) -> bool:
        return self.prediction_id is not None and self.timestamp is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prediction_id": self.prediction_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "model_id": self.model_id,
            "model_name": self.model_name or self.model_id,
            "prediction": self.class_label.value,
            "class_label": self.class_label.outcome,
            "probability": self.probability,
            "confidence": self.confidence_band.value,
            "input_snapshot": dict(self.input_snapshot),
        }
