"""Tree-based predictor wrapping a fitted scikit-learn classifier."""

from typing import Any, Dict, Optional, Sequence
import logging

import numpy as np
from sklearn.base import ClassifierMixin

from .base_model import BasePredictor, positive_class_index

logger = logging.getLogger(__name__)


class TreeModel(BasePredictor):
    """
    Gradient-boosted or bagged tree classifier (any fitted estimator exposing
    ``predict_proba`` and ``classes_``).
    """

    kind = "tree"

    def __init__(self,
                 estimator: ClassifierMixin,
                 feature_names: Sequence[str],
                 positive_label: Any = 1,
                 model_name: Optional[str] = None,
                 background: Optional[np.ndarray] = None,
                 config: Optional[Dict[str, Any]] = None):
        super().__init__(model_name=model_name or type(estimator).__name__,
                         feature_names=feature_names,
                         background=background, config=config)
        if not hasattr(estimator, "predict_proba"):
            raise TypeError(f"{type(estimator).__name__} does not implement predict_proba")
        classes = list(getattr(estimator, "classes_", []))
        if not classes:
            raise ValueError("TreeModel requires a fitted estimator")
        self.estimator = estimator
        self.positive_label = positive_label
        self.positive_index_ = positive_class_index(classes, positive_label)

    def predict_proba(self, X: Any) -> np.ndarray:
        X_arr = self.validate_input(X)
        proba = self.estimator.predict_proba(X_arr)
        return np.asarray(proba, dtype=float)[:, self.positive_index_]

    def get_feature_importance(self) -> Dict[str, float]:
        importances = getattr(self.estimator, "feature_importances_", None)
        if importances is None:
            logger.warning("Estimator %s exposes no feature importances", type(self.estimator).__name__)
            return {}
        return {name: float(value) for name, value in zip(self.feature_names, importances)}
