"""
Record preprocessing for adherence models.

Turns a raw, validated record into the fully numeric, schema-ordered feature
vector consumed by the models.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from ..exceptions import PreprocessingError
from .schema import FeatureSchema, FeatureSpec
from .validator import coerce_numeric, is_absent

logger = logging.getLogger(__name__)

MISSING_STRATEGIES = ("impute", "sentinel")
UNKNOWN_CATEGORY_CODE = -1.0


@dataclass(frozen=True, eq=False)
class FeatureVector:
    """Model-ready representation of one record, in schema order."""

    names: Tuple[str, ...]
    values: np.ndarray

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=float).reshape(-1)
        if values.shape[0] != len(self.names):
            raise ValueError(
                f"FeatureVector has {values.shape[0]} values for {len(self.names)} names"
            )
        values.flags.writeable = False
        object.__setattr__(self, "names", tuple(self.names))
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.names)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureVector):
            return NotImplemented
        return self.names == other.names and np.array_equal(self.values, other.values, equal_nan=True)

    __hash__ = None  # type: ignore[assignment]

    def as_row(self) -> np.ndarray:
        """Single-row 2-D copy suitable for ``predict_proba``."""
        return self.values.reshape(1, -1).copy()

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            name: (None if math.isnan(value) else float(value))
            for name, value in zip(self.names, self.values)
        }


class RecordPreprocessor:
    """
    Deterministic record-to-vector transformation driven by the feature schema.

    Categorical features are encoded to their position in the declared
    category ordering; numeric features are cast to float. Missing optional
    values are imputed from the schema default or replaced by a sentinel,
    depending on ``missing_strategy``.
    """

    def __init__(self,
                 schema: FeatureSchema,
                 missing_strategy: str = "impute",
                 sentinel_value: float = math.nan):
        """
        Initialize preprocessor.

        Args:
            schema: Feature schema the model was trained against
            missing_strategy: "impute" (schema default) or "sentinel"
            sentinel_value: Marker used for missing values under "sentinel"
        """
        if missing_strategy not in MISSING_STRATEGIES:
            raise ValueError(f"missing_strategy must be one of {MISSING_STRATEGIES}")
        self.schema = schema
        self.missing_strategy = missing_strategy
        self.sentinel_value = float(sentinel_value)
        self.feature_names_out_ = list(schema.names)

    def _missing_value(self, spec: FeatureSpec) -> float:
        if spec.required:
            raise PreprocessingError(
                f"Required feature '{spec.name}' is missing",
                detail={"field": spec.name},
            )
        if self.missing_strategy == "sentinel":
            return self.sentinel_value
        if spec.is_categorical:
            if spec.default is None:
                return UNKNOWN_CATEGORY_CODE
            return float(spec.category_code(spec.default))
        if spec.default is None:
            return 0.0
        return float(spec.default)

    def _encode(self, spec: FeatureSpec, value: Any) -> float:
        if spec.is_categorical:
            try:
                return float(spec.category_code(value))
            except ValueError:
                number = coerce_numeric(value)
                if number is not None:
                    try:
                        return float(spec.category_code(number))
                    except ValueError:
                        pass
            raise PreprocessingError(
                f"Value {value!r} for '{spec.name}' is not a declared category",
                detail={"field": spec.name, "value": value},
            )

        number = coerce_numeric(value)
        if number is None:
            raise PreprocessingError(
                f"Value {value!r} for '{spec.name}' cannot be coerced to a number",
                detail={"field": spec.name, "value": value},
            )
        return number

    def transform(self, record: Mapping[str, Any]) -> FeatureVector:
        """
        Transform one record.

        Args:
            record: Mapping of feature name to raw value

        Returns:
            FeatureVector with every schema feature, in schema order
        """
        values: List[float] = []
        for spec in self.schema:
            raw = record.get(spec.name)
            if is_absent(raw):
                values.append(self._missing_value(spec))
            else:
                values.append(self._encode(spec, raw))
        return FeatureVector(names=tuple(self.feature_names_out_), values=np.asarray(values))

    def transform_many(self, records: Iterable[Mapping[str, Any]]) -> List[FeatureVector]:
        return [self.transform(record) for record in records]

    def to_frame(self, vectors: Iterable[FeatureVector]) -> pd.DataFrame:
        """Stack vectors into a DataFrame with the schema's column order."""
        rows = [vector.values for vector in vectors]
        if not rows:
            return pd.DataFrame(columns=self.feature_names_out_, dtype=float)
        return pd.DataFrame(np.vstack(rows), columns=self.feature_names_out_)

    def get_feature_names_out(self) -> List[str]:
        """Get output feature names after transformation."""
        return list(self.feature_names_out_)

    def get_preprocessing_info(self) -> Dict[str, Any]:
        """
        Get information about the preprocessing steps.

        Returns:
            Dictionary containing preprocessing information
        """
        return {
            "input_features": len(self.schema),
            "output_features": len(self.feature_names_out_),
            "feature_names_out": self.get_feature_names_out(),
            "missing_strategy": self.missing_strategy,
            "categorical_encoding": {
                spec.name: list(spec.allowed_values) for spec in self.schema.categorical_features
            },
        }


def preprocess(record: Mapping[str, Any],
               schema: FeatureSchema,
               missing_strategy: str = "impute") -> FeatureVector:
    """Functional form of :meth:`RecordPreprocessor.transform`."""
    return RecordPreprocessor(schema, missing_strategy=missing_strategy).transform(record)
