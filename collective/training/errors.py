"""Exception hierarchy for the collective optimisation core.

Every error also derives from the builtin it refines so callers that only
catch ``ValueError``/``LookupError``/``RuntimeError`` keep working.
"""
from __future__ import annotations


class CollectiveError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(CollectiveError, ValueError):
    """An invalid parameter was supplied at setup time."""


class IdentityLookupError(CollectiveError, LookupError):
    """An instance could not be located in a sorted index or history."""


class TrainingError(CollectiveError, RuntimeError):
    """The base learner failed to train on the current pool."""


class PredictionError(CollectiveError, RuntimeError):
    """The base learner could not produce a class distribution."""
