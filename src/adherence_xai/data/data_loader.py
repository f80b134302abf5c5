"""
Training data browsing: paginated records and dataset statistics.
"""

import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from ..exceptions import InvalidQueryError
from .schema import FeatureSchema

logger = logging.getLogger(__name__)

GOOD_SUBJECT = "Good Subject"
BAD_SUBJECT = "Bad Subject"


def _json_value(value: Any) -> Any:
    """Convert numpy/pandas scalars to plain Python, NaN to ``None``."""
    if value is None:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


class TrainingDataCatalog:
    """
    Read-only view over the dataset the active model was trained on.

    Handles loading, pagination and summary statistics of the training data.
    """

    def __init__(self,
                 data: pd.DataFrame,
                 schema: Optional[FeatureSchema] = None,
                 target_column: str = "offtrt_reason",
                 positive_value: Any = 1,
                 id_column: Optional[str] = "MASK_ID"):
        """
        Initialize the catalog.

        Args:
            data: Training records, one row per subject
            schema: Feature schema used to split categorical/numerical columns
            target_column: Column holding the adherence outcome
            positive_value: Target value meaning the subject completed treatment
            id_column: Subject identifier column, excluded from statistics
        """
        self.data = data.reset_index(drop=True)
        self.schema = schema
        self.target_column = target_column
        self.positive_value = positive_value
        self.id_column = id_column

    @classmethod
    def from_file(cls,
                  file_path: Union[str, Path],
                  file_format: str = "auto",
                  **kwargs: Any) -> "TrainingDataCatalog":
        """
        Load training data from file.

        Args:
            file_path: Path to data file
            file_format: Format of the file ("csv", "parquet", "json", "auto")

        Returns:
            Catalog over the loaded DataFrame
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Data file not found: {file_path}")

        if file_format == "auto":
            file_format = file_path.suffix.lower().lstrip(".")

        logger.info(f"Loading training data from {file_path} (format: {file_format})")
        if file_format == "csv":
            data = pd.read_csv(file_path)
        elif file_format == "parquet":
            data = pd.read_parquet(file_path)
        elif file_format == "json":
            data = pd.read_json(file_path)
        else:
            raise ValueError(f"Unsupported file format: {file_format}")

        logger.info(f"Training data loaded: {data.shape}")
        return cls(data, **kwargs)

    @property
    def total_records(self) -> int:
        return int(len(self.data))

    def page(self, page: int = 1, page_size: int = 10, max_page_size: int = 200) -> Dict[str, Any]:
        """Return one 1-indexed page of raw training records."""
        if page < 1:
            raise InvalidQueryError("page must be >= 1", detail={"page": page})
        if page_size < 1:
            raise InvalidQueryError("page_size must be >= 1", detail={"page_size": page_size})
        page_size = min(page_size, max_page_size)

        start = (page - 1) * page_size
        chunk = self.data.iloc[start:start + page_size]
        records = [
            {column: _json_value(value) for column, value in row.items()}
            for _, row in chunk.iterrows()
        ]
        return {
            "records": records,
            "total_records": self.total_records,
            "page": page,
            "page_size": page_size,
        }

    def _feature_columns(self) -> List[str]:
        excluded = {self.target_column, self.id_column}
        if self.schema is not None:
            return [name for name in self.schema.names if name in self.data.columns]
        return [column for column in self.data.columns if column not in excluded]

    def _categorical_columns(self, columns: List[str]) -> List[str]:
        if self.schema is not None:
            return [spec.name for spec in self.schema.categorical_features if spec.name in columns]
        return [
            column for column in columns
            if not pd.api.types.is_numeric_dtype(self.data[column])
        ]

    def target_distribution(self) -> Dict[str, int]:
        if self.target_column not in self.data.columns:
            return {}
        target = self.data[self.target_column].dropna()
        positives = int((target == self.positive_value).sum())
        return {GOOD_SUBJECT: positives, BAD_SUBJECT: int(len(target) - positives)}

    def stats(self) -> Dict[str, Any]:
        """
        Summary statistics of the training data.

        Returns:
            Dictionary with target distribution, missing values, categorical
            distributions and numerical statistics
        """
        columns = self._feature_columns()
        categorical = self._categorical_columns(columns)
        numerical = [column for column in columns if column not in categorical]

        missing_values = {
            column: int(count)
            for column, count in self.data[columns].isnull().sum().items()
        }

        categorical_distribution: Dict[str, Dict[str, int]] = {}
        for column in categorical:
            counts = self.data[column].value_counts(dropna=True).sort_index()
            categorical_distribution[column] = {
                str(_json_value(value)): int(count) for value, count in counts.items()
            }

        numerical_statistics: Dict[str, Dict[str, Optional[float]]] = {}
        for column in numerical:
            series = pd.to_numeric(self.data[column], errors="coerce")
            numerical_statistics[column] = {
                "mean": _json_value(series.mean()),
                "std": _json_value(series.std()),
                "min": _json_value(series.min()),
                "max": _json_value(series.max()),
                "median": _json_value(series.median()),
            }

        return {
            "total_records": self.total_records,
            "total_features": len(columns),
            "target_distribution": self.target_distribution(),
            "missing_values": missing_values,
            "categorical_distribution": categorical_distribution,
            "numerical_statistics": numerical_statistics,
        }
