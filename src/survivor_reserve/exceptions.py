"""
survivor_reserve/exceptions.py - Error taxonomy

Validation errors are raised before any computation starts; data
availability errors abort a computation that cannot proceed with the
tables it was given. Clamps and smoothing fallbacks are not errors.

Author: Actuarial Pipeline Project
License: MIT
"""


class ValidationError(ValueError):
    """Raised when an input is outside its valid domain (age, sex, rate, sample count)."""

    pass


class DataAvailabilityError(LookupError):
    """Raised when a required table entry does not exist."""

    pass
