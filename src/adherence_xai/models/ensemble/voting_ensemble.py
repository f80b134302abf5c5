"""Soft-voting ensemble over adherence predictors."""
from typing import Any, Dict, List, Optional
import numpy as np
from ..base_model import BasePredictor
import logging

logger = logging.getLogger(__name__)


class EnsembleModel(BasePredictor):
    """
    Weighted soft-voting ensemble: the positive-class probability is the
    weighted mean of the member predictors' probabilities.
    """

    kind = "ensemble"

    def __init__(self,
                 members: Dict[str, BasePredictor],
                 weights: Optional[List[float]] = None,
                 model_name: str = "voting_ensemble",
                 background: Optional[np.ndarray] = None,
                 config: Optional[Dict[str, Any]] = None):
        if not members:
            raise ValueError("EnsembleModel needs at least one member")
        first = next(iter(members.values()))
        super().__init__(model_name=model_name, feature_names=first.feature_names,
                         background=background, config=config)
        for name, member in members.items():
            if member.feature_names != self.feature_names:
                raise ValueError(f"Member '{name}' was trained on different features")
        if weights is not None:
            if len(weights) != len(members):
                raise ValueError("weights must have one entry per member")
            if any(w < 0 for w in weights) or sum(weights) <= 0:
                raise ValueError("weights must be non-negative with a positive sum")
        self.members = dict(members)
        self.weights = weights
        if self.background is None:
            self._inherit_background()

    def _inherit_background(self) -> None:
        for member in self.members.values():
            if member.background is not None:
                self.background = member.background
                logger.debug(f"Ensemble background taken from member {member.model_name}")
                return

    def _normalized_weights(self) -> np.ndarray:
        weights = self.weights if self.weights is not None else [1.0] * len(self.members)
        weights = np.asarray(weights, dtype=float)
        return weights / weights.sum()

    def predict_proba(self, X: Any) -> np.ndarray:
        X_arr = self.validate_input(X)
        stacked = np.stack(
            [member.predict_proba(X_arr) for member in self.members.values()],
            axis=0,
        )  # (n_members, n_samples)
        return (stacked * self._normalized_weights()[:, None]).sum(axis=0)

    def get_feature_importance(self) -> Dict[str, float]:
        # Weighted average of the members' importances, normalized to sum to 1
        importances: Dict[str, float] = {}
        for weight, member in zip(self._normalized_weights(), self.members.values()):
            getter = getattr(member, "get_feature_importance", None)
            if getter is None:
                continue
            for fname, val in getter().items():
                importances[fname] = importances.get(fname, 0.0) + weight * float(val)
        total = sum(importances.values())
        if total > 0:
            importances = {k: v / total for k, v in importances.items()}
        return dict(sorted(importances.items(), key=lambda x: x[1], reverse=True))

    def get_model_info(self) -> Dict[str, Any]:
        info = super().get_model_info()
        info["members"] = {name: member.kind for name, member in self.members.items()}
        info["weights"] = self._normalized_weights().tolist()
        return info
