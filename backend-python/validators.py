"""
Input Validation for the Markov Cohort Model
Validates model parameters and incoming API request data
"""

import math

from exceptions import InvalidParameterError
from config import Config

VALID_OUTCOMES = ["total_cost", "total_utility", "life_expectancy"]


def _as_float(value, name):
    if isinstance(value, bool):
        raise InvalidParameterError(f"Invalid {name}: must be a number, got bool")
    try:
        value = float(value)
    except (ValueError, TypeError):
        raise InvalidParameterError(
            f"Invalid {name}: must be a number, got {type(value).__name__}"
        )
    if math.isnan(value) or math.isinf(value):
        raise InvalidParameterError(f"Invalid {name}: must be finite, got {value}")
    return value


def validate_probability(value, name="probability"):
    """Validate a single transition probability"""
    value = _as_float(value, name)

    if not (0.0 <= value <= 1.0):
        raise InvalidParameterError(
            f"Invalid {name}: must be between 0 and 1, got {value}",
            details={"parameter": name, "value": value}
        )

    return value


def validate_non_negative(value, name="value"):
    """Validate a cost, utility or rate that may not be negative"""
    value = _as_float(value, name)

    if value < 0:
        raise InvalidParameterError(
            f"Invalid {name}: must be non-negative, got {value}",
            details={"parameter": name, "value": value}
        )

    return value


def validate_discount_rate(rate, name="discount_rate"):
    """Validate discount rate; None is rejected like any other non-number"""
    return validate_non_negative(rate, name)


def validate_cycles(n_cycles, name="n_cycles"):
    """Validate cycle count: an integer in 0..Config.MAX_CYCLES"""
    if isinstance(n_cycles, bool):
        raise InvalidParameterError(f"Invalid {name}: must be an integer, got bool")

    if isinstance(n_cycles, float):
        if not n_cycles.is_integer():
            raise InvalidParameterError(f"Invalid {name}: must be an integer, got {n_cycles}")
        n_cycles = int(n_cycles)

    try:
        n_cycles = int(n_cycles)
    except (ValueError, TypeError):
        raise InvalidParameterError(
            f"Invalid {name}: must be an integer, got {type(n_cycles).__name__}"
        )

    if n_cycles < 0:
        raise InvalidParameterError(f"Invalid {name}: must be at least 0, got {n_cycles}")

    if n_cycles > Config.MAX_CYCLES:
        raise InvalidParameterError(
            f"Cycle count {n_cycles} exceeds maximum of {Config.MAX_CYCLES}"
        )

    return n_cycles


def validate_row_total(total, state):
    """Explicit probabilities leaving a state may not exceed 1"""
    if total > 1.0 + 1e-12:
        raise InvalidParameterError(
            f"Invalid transitions from '{state}': explicit probabilities sum to "
            f"{total:.6f}, leaving a negative probability of staying",
            details={"state": state, "total": total}
        )
    return total


def validate_outcome(outcome):
    """Validate the designated sensitivity outcome"""
    if not outcome:
        return Config.SENSITIVITY_OUTCOME

    outcome = str(outcome).lower().strip()

    if outcome not in VALID_OUTCOMES:
        raise InvalidParameterError(
            f"Invalid outcome: '{outcome}'. "
            f"Valid outcomes: {', '.join(VALID_OUTCOMES)}"
        )

    return outcome


def validate_bounds(name, bounds):
    """Validate a (low, high) pair for one sensitivity target"""
    if bounds is None:
        raise InvalidParameterError(
            f"Missing sensitivity bounds for parameter '{name}'"
        )

    if isinstance(bounds, dict):
        bounds = (bounds.get("low"), bounds.get("high"))

    try:
        low, high = bounds
    except (ValueError, TypeError):
        raise InvalidParameterError(
            f"Invalid bounds for '{name}': expected a (low, high) pair"
        )

    return _as_float(low, f"{name}.low"), _as_float(high, f"{name}.high")


def validate_run_request(data):
    """Validate a model run request: parameter overrides keyed by name or symbol"""
    if data is None:
        raise InvalidParameterError("Request body is required (JSON)")

    if not isinstance(data, dict):
        raise InvalidParameterError("Request body must be a JSON object")

    parameters = data.get("parameters", {})
    if not isinstance(parameters, dict):
        raise InvalidParameterError("'parameters' must be a JSON object")

    return {"parameters": parameters}


def validate_sensitivity_request(data):
    """Validate a one-way sensitivity analysis request"""
    validated = validate_run_request(data)

    ranges = data.get("ranges")
    if not ranges or not isinstance(ranges, dict):
        raise InvalidParameterError(
            "Request must include 'ranges': {parameter: [low, high], ...}"
        )

    validated["ranges"] = {
        name: validate_bounds(name, bounds) for name, bounds in ranges.items()
    }
    validated["outcome"] = validate_outcome(data.get("outcome"))
    validated["sort"] = bool(data.get("sort", False))

    return validated
