"""Feature schema declarations: the column contract shared with the trained model."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)


class FeatureKind(str, Enum):
    CATEGORICAL = "categorical"
    NUMERIC = "numeric"


def normalize_category(value: Any) -> Any:
    """Canonical form used for categorical membership tests.

    Integral floats compare equal to their integer code, so ``2.0`` matches a
    declared category ``2``.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value.strip()
    return value


@dataclass(frozen=True)
class FeatureSpec:
    """One model input column and its domain constraints."""

    name: str
    kind: FeatureKind
    required: bool = True
    allowed_values: Tuple[Any, ...] = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    default: Any = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Feature name must be a non-empty string")
        object.__setattr__(self, "kind", FeatureKind(self.kind))
        object.__setattr__(
            self,
            "allowed_values",
            tuple(normalize_category(v) for v in self.allowed_values),
        )
        if self.kind is FeatureKind.CATEGORICAL:
            if self.min_value is not None or self.max_value is not None:
                raise ValueError(f"Categorical feature '{self.name}' cannot declare min/max")
            if not self.allowed_values:
                raise ValueError(f"Categorical feature '{self.name}' must declare allowed_values")
            if len(set(self.allowed_values)) != len(self.allowed_values):
                raise ValueError(f"Categorical feature '{self.name}' has duplicate allowed_values")
            if self.default is not None and normalize_category(self.default) not in self.allowed_values:
                raise ValueError(f"Default for '{self.name}' is not one of its allowed_values")
        else:
            if self.allowed_values:
                raise ValueError(f"Numeric feature '{self.name}' cannot declare allowed_values")
            if (
                self.min_value is not None
                and self.max_value is not None
                and self.min_value > self.max_value
            ):
                raise ValueError(f"Feature '{self.name}' has min_value > max_value")

    @property
    def is_categorical(self) -> bool:
        return self.kind is FeatureKind.CATEGORICAL

    def category_code(self, value: Any) -> int:
        """Position of ``value`` in the declared category ordering."""
        return self.allowed_values.index(normalize_category(value))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind.value,
            "required": self.required,
            "description": self.description,
        }
        if self.is_categorical:
            payload["allowed_values"] = list(self.allowed_values)
        else:
            if self.min_value is not None:
                payload["min_value"] = self.min_value
            if self.max_value is not None:
                payload["max_value"] = self.max_value
        if self.default is not None:
            payload["default"] = self.default
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FeatureSpec":
        kind = payload.get("kind", payload.get("type"))
        if kind in ("numerical", "number"):
            kind = FeatureKind.NUMERIC
        return cls(
            name=payload["name"],
            kind=FeatureKind(kind),
            required=bool(payload.get("required", True)),
            allowed_values=tuple(payload.get("allowed_values") or ()),
            min_value=payload.get("min_value", payload.get("min")),
            max_value=payload.get("max_value", payload.get("max")),
            default=payload.get("default"),
            description=payload.get("description", ""),
        )


class FeatureSchema:
    """Ordered, immutable set of feature specifications."""

    def __init__(self, features: Iterable[FeatureSpec]):
        specs = tuple(features)
        seen = set()
        duplicates = []
        for spec in specs:
            if spec.name in seen:
                duplicates.append(spec.name)
            seen.add(spec.name)
        if duplicates:
            raise ValueError(f"Duplicate feature names in schema: {duplicates}")
        self._features = specs
        self._index = MappingProxyType({spec.name: spec for spec in specs})

    def __iter__(self) -> Iterator[FeatureSpec]:
        return iter(self._features)

    def __len__(self) -> int:
        return len(self._features)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __getitem__(self, name: str) -> FeatureSpec:
        return self._index[name]

    def __repr__(self) -> str:
        return f"FeatureSchema({len(self)} features)"

    @property
    def names(self) -> List[str]:
        return [spec.name for spec in self._features]

    @property
    def features(self) -> Tuple[FeatureSpec, ...]:
        return self._features

    @property
    def required_features(self) -> List[FeatureSpec]:
        return [spec for spec in self._features if spec.required]

    @property
    def categorical_features(self) -> List[FeatureSpec]:
        return [spec for spec in self._features if spec.is_categorical]

    @property
    def numeric_features(self) -> List[FeatureSpec]:
        return [spec for spec in self._features if not spec.is_categorical]

    def get(self, name: str) -> Optional[FeatureSpec]:
        return self._index.get(name)

    def describe(self) -> Dict[str, Any]:
        """Summary served by the ``features`` endpoint."""
        return {
            "total_features": len(self),
            "categorical_features": len(self.categorical_features),
            "numerical_features": len(self.numeric_features),
            "features": [spec.to_dict() for spec in self._features],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FeatureSchema":
        entries = payload.get("features", [])
        return cls(FeatureSpec.from_dict(entry) for entry in entries)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "FeatureSchema":
        path = Path(path)
        with open(path, "r") as handle:
            payload = yaml.safe_load(handle) or {}
        schema = cls.from_dict(payload)
        logger.info("Loaded feature schema with %d features from %s", len(schema), path)
        return schema

    @classmethod
    def from_model_metadata(cls, metadata: Mapping[str, Any]) -> "FeatureSchema":
        """Build the schema from a trained model's metadata block.

        The metadata is expected to carry a ``feature_schema`` section with the
        same layout as ``feature_schema.yaml``.
        """
        section = metadata.get("feature_schema")
        if section is None:
            raise ValueError("Model metadata has no 'feature_schema' section")
        return cls.from_dict(section)
