"""Additive per-feature explanations for adherence predictions.

An explanation splits a predicted probability into a base value (the model's
output at the reference population) plus one contribution per feature, such
that ``base_value + sum(contributions) == probability`` for that vector. The
attribution method is chosen by the predictor's ``kind``:

* linear models use an exact log-odds decomposition around the background
  mean, rescaled onto the probability scale;
* tree models and ensembles use SHAP's permutation explainer over the model's
  background sample.

Every explanation is checked against the reconciliation tolerance before it is
returned.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

import numpy as np
import shap

from ..data.preprocessor import FeatureVector
from ..exceptions import ExplanationError, ExplanationUnsupportedError
from ..history.records import ClassLabel
from ..models.base_model import BasePredictor
from ..models.linear_model import LinearModel, sigmoid

logger = logging.getLogger(__name__)

# Below this the log-odds shift is treated as zero
_DEGENERATE_SHIFT = 1e-12


@dataclass(frozen=True)
class Explanation:
    """Additive attribution of one prediction."""

    base_value: float
    contributions: Dict[str, float]
    probability: float
    class_label: ClassLabel
    method: str
    prediction_ref: Optional[str] = None
    model_id: Optional[str] = None
    feature_values: Dict[str, Any] = field(default_factory=dict)

    @property
    def reconciliation_error(self) -> float:
        return abs(self.base_value + sum(self.contributions.values()) - self.probability)

    def _entry(self, name: str) -> Dict[str, Any]:
        return {
            "feature": name,
            "value": self.feature_values.get(name),
            "impact": self.contributions[name],
        }

    def top_positive_features(self, k: int = 5) -> List[Dict[str, Any]]:
        """Features pushing toward "Good Subject", strongest first, ties by name."""
        ranked = sorted(
            (name for name, impact in self.contributions.items() if impact > 0),
            key=lambda name: (-self.contributions[name], name),
        )
        return [self._entry(name) for name in ranked[:k]]

    def top_negative_features(self, k: int = 5) -> List[Dict[str, Any]]:
        """Features pushing toward "Bad Subject", strongest first, ties by name."""
        ranked = sorted(
            (name for name, impact in self.contributions.items() if impact < 0),
            key=lambda name: (self.contributions[name], name),
        )
        return [self._entry(name) for name in ranked[:k]]

    def to_dict(self, top_k: int = 5) -> Dict[str, Any]:
        return {
            "prediction_id": self.prediction_ref,
            "model_id": self.model_id,
            "prediction": self.class_label.value,
            "class_label": self.class_label.outcome,
            "probability": self.probability,
            "base_value": self.base_value,
            "method": self.method,
            "contributions": dict(self.contributions),
            "shap_values": {
                "base_value": self.base_value,
                "features": [self._entry(name) for name in self.contributions],
            },
            "top_positive_features": self.top_positive_features(top_k),
            "top_negative_features": self.top_negative_features(top_k),
        }


class AttributionMethod(ABC):
    """Computes ``(base_value, contributions)`` for one vector."""

    name = "base"

    def __init__(self, **options: Any):
        self.options = options

    @abstractmethod
    def attribute(self, predictor: BasePredictor, row: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Args:
            predictor: Model being explained
            row: 1-D preprocessed feature values

        Returns:
            Base value and one contribution per feature, in feature order
        """


class LinearAttribution(AttributionMethod):
    """
    Exact decomposition for models with linear log-odds.

    Each feature's log-odds shift ``w_i * (x_i - ref_i)`` relative to the
    background mean is rescaled by ``(p - base) / total_shift``. The sigmoid is
    monotonic, so the factor is positive and every contribution keeps the sign
    of its log-odds effect.
    """

    name = "linear_exact"

    def attribute(self, predictor: BasePredictor, row: np.ndarray) -> Tuple[float, np.ndarray]:
        if not isinstance(predictor, LinearModel):
            raise ExplanationUnsupportedError(
                f"Linear attribution needs a LinearModel, got {type(predictor).__name__}"
            )
        reference = predictor.reference_point()
        base_value = float(sigmoid(reference @ predictor.coef + predictor.intercept))
        probability = float(predictor.predict_proba(row)[0])

        shifts = predictor.coef * (row - reference)
        total = float(shifts.sum())
        if abs(total) < _DEGENERATE_SHIFT:
            # first-order slope of the sigmoid at the base value
            return base_value, shifts * base_value * (1.0 - base_value)
        return base_value, shifts * ((probability - base_value) / total)


class PermutationAttribution(AttributionMethod):
    """SHAP permutation explainer over the predictor's background sample."""

    name = "shap_permutation"

    def attribute(self, predictor: BasePredictor, row: np.ndarray) -> Tuple[float, np.ndarray]:
        if predictor.background is None or len(predictor.background) == 0:
            raise ExplanationUnsupportedError(
                f"Model '{predictor.model_name}' has no background sample to explain against"
            )
        max_evals = int(self.options.get("max_evals", 500))
        background_samples = int(self.options.get("background_samples", 100))
        random_state = self.options.get("random_state", 42)

        masker = shap.maskers.Independent(predictor.background, max_samples=background_samples)
        explainer = shap.explainers.Permutation(
            predictor.predict_proba,
            masker,
            seed=random_state,
        )
        # the permutation explainer needs two passes over every feature
        evals = max(max_evals, 2 * row.shape[0] + 1)
        result = explainer(row.reshape(1, -1), max_evals=evals, silent=True)
        values = np.asarray(result.values, dtype=float).reshape(-1)
        base_value = float(np.asarray(result.base_values, dtype=float).reshape(-1)[0])
        return base_value, values


DEFAULT_METHODS: Dict[str, Type[AttributionMethod]] = {
    "linear": LinearAttribution,
    "tree": PermutationAttribution,
    "ensemble": PermutationAttribution,
}


class ExplainabilityEngine:
    """
    Dispatches predictors to their attribution method and enforces
    reconciliation with the predicted probability.
    """

    def __init__(self,
                 threshold: float = 0.5,
                 tolerance: float = 1e-6,
                 top_k: int = 5,
                 max_evals: int = 500,
                 background_samples: int = 100,
                 random_state: int = 42,
                 methods: Optional[Mapping[str, Type[AttributionMethod]]] = None):
        self.threshold = threshold
        self.tolerance = tolerance
        self.top_k = top_k
        self.method_options = {
            "max_evals": max_evals,
            "background_samples": background_samples,
            "random_state": random_state,
        }
        self.methods: Dict[str, Type[AttributionMethod]] = dict(
            DEFAULT_METHODS if methods is None else methods
        )

    def register_method(self, kind: str, method: Type[AttributionMethod]) -> None:
        self.methods[kind] = method

    def supports(self, predictor: BasePredictor) -> bool:
        return predictor.kind in self.methods

    def method_for(self, predictor: BasePredictor) -> AttributionMethod:
        method_cls = self.methods.get(predictor.kind)
        if method_cls is None:
            raise ExplanationUnsupportedError(
                f"No attribution method registered for model kind '{predictor.kind}'",
                detail={"model_kind": predictor.kind, "supported": sorted(self.methods)},
            )
        return method_cls(**self.method_options)

    def explain(self,
                vector: FeatureVector,
                predictor: BasePredictor,
                prediction_ref: Optional[str] = None,
                model_id: Optional[str] = None,
                feature_values: Optional[Mapping[str, Any]] = None) -> Explanation:
        """
        Explain ``predictor``'s probability for ``vector``.

        Args:
            vector: Preprocessed record
            predictor: Model that produced (or would produce) the prediction
            prediction_ref: Logged prediction this explanation belongs to
            model_id: Registry id of ``predictor``
            feature_values: Raw input values shown next to each contribution

        Returns:
            Explanation whose base value and contributions sum to the probability
        """
        method = self.method_for(predictor)
        if list(vector.names) != predictor.feature_names:
            raise ExplanationError("Feature vector columns do not match the model inputs")

        row = vector.values.astype(float)
        probability = float(predictor.predict_proba(row.reshape(1, -1))[0])
        base_value, values = method.attribute(predictor, row)

        contributions = {name: float(v) for name, v in zip(vector.names, values)}
        residual = abs(base_value + sum(contributions.values()) - probability)
        if residual > self.tolerance * max(1.0, abs(probability)):
            logger.error(
                "Attribution %s off by %.3g for model %s", method.name, residual, predictor.model_name
            )
            raise ExplanationError(
                f"{method.name} attributions do not reconcile with the predicted probability",
                detail={"residual": residual, "tolerance": self.tolerance},
            )

        values_shown = dict(feature_values) if feature_values is not None else vector.to_dict()
        label = ClassLabel.POSITIVE if probability >= self.threshold else ClassLabel.NEGATIVE
        logger.debug(f"Explained prediction {prediction_ref} with {method.name}")
        return Explanation(
            base_value=base_value,
            contributions=contributions,
            probability=probability,
            class_label=label,
            method=method.name,
            prediction_ref=prediction_ref,
            model_id=model_id,
            feature_values={name: values_shown.get(name) for name in vector.names},
        )
