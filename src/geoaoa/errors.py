from __future__ import annotations

"""
Error kinds raised by the validation / applicability engine.

All of them subclass ValueError so callers that only guard against bad input
keep working. Messages name the offending entity and the violated invariant.
"""


class GeoAOAError(ValueError):
    pass


class ConfigError(GeoAOAError):
    """Dimension or weight mismatch, unknown option, invalid parameter."""


class DataError(GeoAOAError):
    """Zero-variance variable, malformed folds, training/prediction feature-set mismatch."""


class InsufficientDataError(GeoAOAError):
    """Too few points, folds or observations for NNDM or calibration."""


class DomainMismatchError(GeoAOAError):
    """Prediction domain is missing variables the training set requires."""
