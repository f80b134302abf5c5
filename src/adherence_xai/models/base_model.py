"""
Base predictor class for adherence models.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union
import logging

import joblib
import numpy as np
import pandas as pd

from ..data.preprocessor import FeatureVector

logger = logging.getLogger(__name__)


class BasePredictor(ABC):
    """
    Abstract base class for trained adherence models.

    A predictor turns a batch of feature vectors into the probability of the
    positive class ("Good Subject"). Concrete variants wrap linear models,
    tree models and ensembles; ``kind`` selects the attribution method used
    by the explainability engine.
    """

    kind = "base"

    def __init__(self,
                 model_name: str,
                 feature_names: Sequence[str],
                 background: Optional[np.ndarray] = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the base predictor.

        Args:
            model_name: Name of the model
            feature_names: Input columns, in the order the model was trained on
            background: Sample of preprocessed training rows used as the
                reference population for explanations
            config: Configuration dictionary
        """
        self.model_name = model_name
        self.feature_names = list(feature_names)
        self.config = config or {}
        self.background = None
        if background is not None:
            self.set_background(background)

    @abstractmethod
    def predict_proba(self, X: Union[np.ndarray, pd.DataFrame]) -> np.ndarray:
        """
        Predict the positive-class probability.

        Args:
            X: Input features, shape (n_samples, n_features)

        Returns:
            1-D array of probabilities, one per row
        """

    def predict(self, vector: Union[FeatureVector, np.ndarray]) -> float:
        """Probability of the positive class for a single feature vector."""
        if isinstance(vector, FeatureVector):
            self._check_alignment(vector.names)
            row = vector.as_row()
        else:
            row = self.validate_input(vector)
        return float(self.predict_proba(row)[0])

    def set_background(self, background: np.ndarray) -> None:
        background = self.validate_input(background)
        if background.shape[1] != len(self.feature_names):
            raise ValueError(
                f"Background has {background.shape[1]} columns, expected {len(self.feature_names)}"
            )
        self.background = background

    def reference_point(self) -> np.ndarray:
        """Mean background row, or zeros when no background is available."""
        if self.background is None or len(self.background) == 0:
            return np.zeros(len(self.feature_names))
        return np.nanmean(self.background, axis=0)

    def _check_alignment(self, names: Sequence[str]) -> None:
        if list(names) != self.feature_names:
            raise ValueError(
                f"Feature vector columns do not match model '{self.model_name}' inputs"
            )

    def get_model_info(self) -> Dict[str, Any]:
        """Get model metadata and configuration."""
        return {
            "model_name": self.model_name,
            "kind": self.kind,
            "config": self.config,
            "feature_names": self.feature_names,
            "background_rows": 0 if self.background is None else int(len(self.background)),
        }

    def save_model(self, file_path: str) -> None:
        """
        Save the predictor to disk.

        Args:
            file_path: Path to save the model
        """
        joblib.dump(self, file_path)
        logger.info(f"Model saved to {file_path}")

    @classmethod
    def load_model(cls, file_path: str) -> "BasePredictor":
        """
        Load a predictor from disk.

        Args:
            file_path: Path to the saved model

        Returns:
            Loaded predictor instance
        """
        model = joblib.load(file_path)
        if not isinstance(model, BasePredictor):
            raise TypeError(f"{file_path} does not contain a BasePredictor")
        logger.info(f"Model loaded from {file_path}")
        return model

    def validate_input(self, X: Any) -> np.ndarray:
        """
        Validate and prepare input data.

        Args:
            X: Input features

        Returns:
            Validated 2-D float array
        """
        if isinstance(X, pd.DataFrame):
            X = X.values
        X = np.asarray(X, dtype=float)

        if X.ndim == 1:
            X = X.reshape(1, -1)

        return X


def positive_class_index(classes: List[Any], positive_label: Any) -> int:
    """Column of ``predict_proba`` output that holds the positive class."""
    if positive_label in classes:
        return classes.index(positive_label)
    if len(classes) == 2:
        return 1
    raise ValueError(f"Positive label {positive_label!r} not found in classes {classes}")
