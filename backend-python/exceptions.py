"""
Custom Exception Classes for the Markov Cohort Model
Provides structured error handling with proper HTTP status codes
"""


class MarkovModelError(Exception):
    """Base exception for all cohort model errors"""
    status_code = 500

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self):
        return {
            "error": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "error_type": self.__class__.__name__
        }


class InvalidParameterError(MarkovModelError):
    """Parameter value outside its admissible range"""
    status_code = 400


class InvalidDimensionError(MarkovModelError):
    """Matrix or vector size disagrees with the state space"""
    status_code = 400


class DimensionMismatchError(MarkovModelError):
    """Reward or weight vector length disagrees with the trace"""
    status_code = 400


class UnknownParameterError(MarkovModelError):
    """Parameter name not present in the model parameters"""
    status_code = 400


class NumericalDriftError(MarkovModelError):
    """Probability mass drifted away from 1 beyond tolerance (strict mode only)"""
    status_code = 500


class ModelEvaluationError(MarkovModelError):
    """Model evaluation failed unexpectedly"""
    status_code = 500
