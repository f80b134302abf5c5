"""
Predictor models for adherence prediction.
"""

from .base_model import BasePredictor
from .ensemble import EnsembleModel
from .linear_model import LinearModel
from .tree_model import TreeModel

__all__ = ["BasePredictor", "LinearModel", "TreeModel", "EnsembleModel"]
