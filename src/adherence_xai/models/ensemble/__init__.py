"""Ensemble predictors for adherence models."""

from .voting_ensemble import EnsembleModel

__all__ = [
	"EnsembleModel"
]
