"""Logistic (linear log-odds) predictor."""

from typing import Any, Dict, Optional, Sequence
import logging

import numpy as np
from sklearn.linear_model import LogisticRegression

from .base_model import BasePredictor, positive_class_index

logger = logging.getLogger(__name__)


def sigmoid(z: np.ndarray) -> np.ndarray:
    """Numerically stable logistic function."""
    return np.exp(-np.logaddexp(0.0, -np.asarray(z, dtype=float)))


def logit(p: float) -> float:
    return float(np.log(p) - np.log1p(-p))


class LinearModel(BasePredictor):
    """
    Predictor whose log-odds are linear in the features:
    ``p = sigmoid(coef . x + intercept)``.
    """

    kind = "linear"

    def __init__(self,
                 coef: Sequence[float],
                 intercept: float,
                 feature_names: Sequence[str],
                 model_name: str = "logistic_regression",
                 background: Optional[np.ndarray] = None,
                 config: Optional[Dict[str, Any]] = None):
        super().__init__(model_name=model_name, feature_names=feature_names,
                         background=background, config=config)
        self.coef = np.asarray(coef, dtype=float).reshape(-1)
        self.intercept = float(intercept)
        if self.coef.shape[0] != len(self.feature_names):
            raise ValueError(
                f"{self.coef.shape[0]} coefficients for {len(self.feature_names)} features"
            )

    @classmethod
    def from_estimator(cls,
                       estimator: LogisticRegression,
                       feature_names: Sequence[str],
                       positive_label: Any = 1,
                       **kwargs: Any) -> "LinearModel":
        """Wrap a fitted binary scikit-learn ``LogisticRegression``."""
        classes = list(getattr(estimator, "classes_", []))
        if len(classes) != 2:
            raise ValueError("LinearModel requires a binary classifier")
        coef = np.asarray(estimator.coef_, dtype=float)[0]
        intercept = float(np.asarray(estimator.intercept_).reshape(-1)[0])
        # sklearn's coefficients score classes_[1]; flip them when the
        # positive label is classes_[0]
        if positive_class_index(classes, positive_label) == 0:
            coef, intercept = -coef, -intercept
        return cls(coef=coef, intercept=intercept, feature_names=feature_names, **kwargs)

    def decision_function(self, X: Any) -> np.ndarray:
        X_arr = self.validate_input(X)
        return X_arr @ self.coef + self.intercept

    def predict_proba(self, X: Any) -> np.ndarray:
        return sigmoid(self.decision_function(X))

    def get_feature_importance(self) -> Dict[str, float]:
        return {name: float(abs(w)) for name, w in zip(self.feature_names, self.coef)}
