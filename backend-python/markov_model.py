"""
Markov Cohort Model for Health-State Progression
================================================
Propagates a closed cohort across mutually exclusive health states under a
stationary (time-homogeneous) Markov process.

Theoretical Foundations:
- Markov Chains (Markov, 1906) - Memoryless state transitions
- Cohort state-transition models (Sonnenberg & Beck, 1993)
- Chapman-Kolmogorov Equation: P(n) = Pⁿ (n-step transition matrix)
- Cohort trace: m(t) = m(t-1) · P (row vector times row-stochastic matrix)
- Absorbing Markov Chains (Kemeny & Snell, 1960)

References:
- Briggs, Claxton & Sculpher (2006) - Decision Modelling for Health Economic Evaluation
- Siebert et al. (2012) - State-Transition Modeling (ISPOR-SMDM Task Force)
"""

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from config import Config
from exceptions import (
    InvalidParameterError, InvalidDimensionError,
    DimensionMismatchError, UnknownParameterError, NumericalDriftError
)
from validators import (
    validate_probability, validate_non_negative, validate_discount_rate,
    validate_cycles, validate_row_total
)

logger = logging.getLogger(__name__)


# ============================================
# STATE SPACE
# ============================================

HEALTHY = "Healthy"
SICK = "Sick"
DEAD = "Dead"

DEFAULT_STATES = (HEALTHY, SICK, DEAD)

# death_state not given: use DEAD when the names include it
_DEATH_STATE_AUTO = object()


class StateSpace:
    """
    Ordered, immutable enumeration of health states.

    The order declared here is the row/column order of every transition
    matrix, trace and reward vector in a run. ``death_state`` defaults to
    "Dead" when that name is present and to None otherwise; pass None to
    declare a space with no death state explicitly.
    """

    __slots__ = ("_names", "_index", "_death_state")

    def __init__(self, names: Sequence[str] = DEFAULT_STATES,
                 death_state: Optional[str] = _DEATH_STATE_AUTO):
        names = tuple(str(n) for n in names)
        if death_state is _DEATH_STATE_AUTO:
            death_state = DEAD if DEAD in names else None
        if not names:
            raise InvalidParameterError("State space must contain at least one state")
        if len(set(names)) != len(names):
            raise InvalidParameterError(
                f"State names must be distinct, got {list(names)}"
            )
        if death_state is not None and death_state not in names:
            raise InvalidDimensionError(
                f"Death state '{death_state}' is not one of {list(names)}"
            )

        self._names = names
        self._index = {name: i for i, name in enumerate(names)}
        self._death_state = death_state

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    @property
    def death_state(self) -> Optional[str]:
        return self._death_state

    def __len__(self):
        return len(self._names)

    def __iter__(self):
        return iter(self._names)

    def __contains__(self, name):
        return name in self._index

    def __eq__(self, other):
        if not isinstance(other, StateSpace):
            return NotImplemented
        return self._names == other._names and self._death_state == other._death_state

    def __hash__(self):
        return hash((self._names, self._death_state))

    def __repr__(self):
        return f"StateSpace({list(self._names)}, death_state={self._death_state!r})"

    def index(self, name: str) -> int:
        """Position of a state in the declared order"""
        try:
            return self._index[name]
        except KeyError:
            raise InvalidDimensionError(
                f"Unknown state '{name}'. Valid states: {', '.join(self._names)}"
            )

    def vector(self, values: Union[Mapping[str, float], Sequence[float], np.ndarray],
               name: str = "vector") -> np.ndarray:
        """
        Turn per-state values into a read-only array in state order.

        Accepts a {state: value} mapping (every state exactly once) or an
        already-ordered sequence of matching length.
        """
        if isinstance(values, Mapping):
            missing = [s for s in self._names if s not in values]
            extra = [k for k in values if k not in self._index]
            if missing or extra:
                raise DimensionMismatchError(
                    f"{name} does not match the state space",
                    details={"missing": missing, "unexpected": list(extra)}
                )
            arr = np.array([float(values[s]) for s in self._names], dtype=float)
        else:
            arr = np.array(values, dtype=float)
            if arr.ndim != 1 or arr.shape[0] != len(self._names):
                raise DimensionMismatchError(
                    f"{name} has shape {arr.shape}, expected ({len(self._names)},)"
                )
        arr.setflags(write=False)
        return arr

    def initial_distribution(self, start: Optional[str] = None) -> np.ndarray:
        """Entire cohort in one state (the first declared state by default)"""
        dist = np.zeros(len(self._names))
        dist[0 if start is None else self.index(start)] = 1.0
        dist.setflags(write=False)
        return dist


# ============================================
# MODEL PARAMETERS
# ============================================

# Literature symbols → field names
PARAMETER_SYMBOLS = {
    "p.HD": "p_hd",
    "p.HS": "p_hs",
    "p.SD": "p_sd",
    "c.H": "c_h",
    "c.S": "c_s",
    "c.D": "c_d",
    "u.H": "u_h",
    "u.S": "u_s",
    "u.D": "u_d",
}

PROBABILITY_FIELDS = ("p_hd", "p_hs", "p_sd")
COST_FIELDS = ("c_h", "c_s", "c_d")
UTILITY_FIELDS = ("u_h", "u_s", "u_d")


@dataclass(frozen=True)
class ModelParameters:
    """
    Immutable parameter record for the canonical Healthy/Sick/Dead model.

    Every instance is validated on construction; use ``replace`` to derive
    a variant with one or more fields overridden.
    """
    p_hd: float = 0.02    # Healthy → Dead
    p_hs: float = 0.05    # Healthy → Sick
    p_sd: float = 0.10    # Sick → Dead
    c_h: float = 400.0
    c_s: float = 100.0
    c_d: float = 0.0
    u_h: float = 0.8
    u_s: float = 0.5
    u_d: float = 0.0
    discount_rate: float = Config.DEFAULT_DISCOUNT_RATE
    n_cycles: int = Config.DEFAULT_CYCLES

    def __post_init__(self):
        for name in PROBABILITY_FIELDS:
            object.__setattr__(self, name, validate_probability(getattr(self, name), name))
        for name in COST_FIELDS + UTILITY_FIELDS:
            object.__setattr__(self, name, validate_non_negative(getattr(self, name), name))
        object.__setattr__(self, "discount_rate", validate_discount_rate(self.discount_rate))
        object.__setattr__(self, "n_cycles", validate_cycles(self.n_cycles))

        validate_row_total(self.p_hd + self.p_hs, HEALTHY)

    @classmethod
    def canonical(cls) -> "ModelParameters":
        return cls()

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in dataclasses.fields(cls)]

    @classmethod
    def from_dict(cls, data: Optional[Mapping], base: Optional["ModelParameters"] = None
                  ) -> "ModelParameters":
        """Build from a (partial) mapping keyed by field name or symbol"""
        base = base if base is not None else cls.canonical()
        return base.replace(**dict(data or {}))

    def replace(self, **overrides) -> "ModelParameters":
        """Copy with the named fields overridden; all others untouched"""
        resolved = {}
        for key, value in overrides.items():
            name = resolve_parameter_name(key)
            if name in resolved:
                raise InvalidParameterError(f"Parameter '{name}' given more than once")
            resolved[name] = value
        return dataclasses.replace(self, **resolved)

    def to_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)

    def costs(self) -> Dict[str, float]:
        return {HEALTHY: self.c_h, SICK: self.c_s, DEAD: self.c_d}

    def utilities(self) -> Dict[str, float]:
        return {HEALTHY: self.u_h, SICK: self.u_s, DEAD: self.u_d}

    def transitions(self) -> Dict[str, Dict[str, float]]:
        """Explicit (off-diagonal) transition probabilities per origin state"""
        return {
            HEALTHY: {SICK: self.p_hs, DEAD: self.p_hd},
            SICK: {DEAD: self.p_sd},
        }


def resolve_parameter_name(name: str) -> str:
    """Map a field name or literature symbol onto a ModelParameters field"""
    key = PARAMETER_SYMBOLS.get(name, name)
    if key not in ModelParameters.field_names():
        raise UnknownParameterError(
            f"Unknown parameter '{name}'",
            details={"valid_parameters": ModelParameters.field_names() + list(PARAMETER_SYMBOLS)}
        )
    return key


# ============================================
# TRANSITION MATRIX
# ============================================

ROW_SUM_TOLERANCE = 1e-9


@dataclass(frozen=True, eq=False)
class TransitionMatrix:
    """Row-stochastic matrix P[i, j] = Pr(state j at t+1 | state i at t)"""
    state_space: StateSpace
    values: np.ndarray

    def __post_init__(self):
        values = np.array(self.values, dtype=float)
        n = len(self.state_space)
        if values.ndim != 2 or values.shape[0] != values.shape[1]:
            raise InvalidDimensionError(f"Transition matrix must be square, got shape {values.shape}")
        if values.shape[0] != n:
            raise InvalidDimensionError(
                f"Transition matrix is {values.shape[0]}x{values.shape[1]} "
                f"but the state space has {n} states"
            )
        if np.any(values < 0) or np.any(values > 1):
            raise InvalidParameterError("Transition probabilities must lie in [0, 1]")
        row_sums = values.sum(axis=1)
        bad = np.flatnonzero(np.abs(row_sums - 1.0) > ROW_SUM_TOLERANCE)
        if bad.size:
            raise InvalidParameterError(
                "Transition matrix rows must sum to 1",
                details={self.state_space.names[i]: float(row_sums[i]) for i in bad}
            )
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    @property
    def size(self) -> int:
        return self.values.shape[0]

    def probability(self, origin: str, target: str) -> float:
        return float(self.values[self.state_space.index(origin), self.state_space.index(target)])

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        names = self.state_space.names
        return {
            names[i]: {names[j]: float(self.values[i, j]) for j in range(self.size)}
            for i in range(self.size)
        }


class TransitionMatrixBuilder:
    """
    Builds a TransitionMatrix from scalar transition probabilities.

    Only off-diagonal probabilities are supplied; each row's diagonal
    ("stay") entry receives the remainder so the row sums to 1. Rows not
    mentioned at all are absorbing.
    """

    def __init__(self, state_space: Optional[StateSpace] = None):
        self.state_space = state_space or StateSpace()

    def from_probabilities(self, transitions: Mapping[str, Mapping[str, float]]
                           ) -> TransitionMatrix:
        n = len(self.state_space)
        P = np.zeros((n, n))

        for origin, targets in transitions.items():
            i = self.state_space.index(origin)
            for target, p in targets.items():
                j = self.state_space.index(target)
                if i == j:
                    raise InvalidParameterError(
                        f"Self-transition for '{origin}' is derived, not supplied"
                    )
                P[i, j] = validate_probability(p, f"{origin}->{target}")
            validate_row_total(math.fsum(P[i]), origin)

        for i in range(n):
            P[i, i] = max(0.0, 1.0 - math.fsum(P[i]))

        return TransitionMatrix(self.state_space, P)

    def build(self, params: ModelParameters) -> TransitionMatrix:
        """Canonical topology: Healthy→{Healthy, Sick, Dead}, Sick→{Sick, Dead}, Dead absorbing"""
        for name in DEFAULT_STATES:
            if name not in self.state_space:
                raise InvalidDimensionError(
                    f"Canonical model requires state '{name}' in {list(self.state_space)}"
                )
        return self.from_probabilities(params.transitions())


# ============================================
# COHORT TRACE SIMULATOR
# ============================================

@dataclass(frozen=True, eq=False)
class CohortTrace:
    """
    State occupancy per cycle: row t is the cohort distribution at cycle t.

    ``max_drift`` and ``drift_cycles`` report how far probability mass
    strayed from 1; a non-empty ``drift_cycles`` means NumericalDrift
    was observed.
    """
    state_space: StateSpace
    values: np.ndarray
    tolerance: float = ROW_SUM_TOLERANCE
    max_drift: float = 0.0
    drift_cycles: Tuple[int, ...] = field(default_factory=tuple)

    def __post_init__(self):
        values = np.array(self.values, dtype=float)
        values.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "drift_cycles", tuple(self.drift_cycles))

    def __len__(self):
        return self.values.shape[0]

    def __getitem__(self, cycle):
        return self.values[cycle]

    @property
    def n_cycles(self) -> int:
        return self.values.shape[0] - 1

    @property
    def has_drift(self) -> bool:
        return bool(self.drift_cycles)

    def state(self, name: str) -> np.ndarray:
        """Occupancy of one state across all cycles"""
        return self.values[:, self.state_space.index(name)]


class CohortTraceSimulator:
    """
    Deterministic cohort propagation: trace[t] = trace[t-1] · P.

    Runs exactly ``n_cycles`` steps with no convergence test. Probability
    mass is checked after every step; deviations beyond ``tolerance`` are
    logged and recorded on the trace, or raised when ``strict``.
    """

    def __init__(self, tolerance: Optional[float] = None, strict: Optional[bool] = None):
        self.tolerance = Config.DRIFT_TOLERANCE if tolerance is None else float(tolerance)
        self.strict = Config.STRICT_DRIFT if strict is None else bool(strict)

    def simulate(self, matrix: Union[TransitionMatrix, np.ndarray],
                 initial: Optional[Sequence[float]] = None,
                 n_cycles: int = 0) -> CohortTrace:
        if isinstance(matrix, TransitionMatrix):
            P = matrix.values
            state_space = matrix.state_space
        else:
            P = np.asarray(matrix, dtype=float)
            if P.ndim != 2 or P.shape[0] != P.shape[1]:
                raise InvalidDimensionError(f"Transition matrix must be square, got shape {P.shape}")
            state_space = StateSpace([f"S{i}" for i in range(P.shape[0])], death_state=None)

        n_cycles = validate_cycles(n_cycles)
        m0 = self._check_initial(initial, state_space, P.shape[0])

        trace = np.empty((n_cycles + 1, P.shape[0]))
        trace[0] = m0
        max_drift = abs(math.fsum(m0) - 1.0)
        drift_cycles = []

        for t in range(1, n_cycles + 1):
            trace[t] = trace[t - 1] @ P

            drift = abs(math.fsum(trace[t]) - 1.0)
            max_drift = max(max_drift, drift)
            if drift > self.tolerance:
                if self.strict:
                    raise NumericalDriftError(
                        f"Probability mass drifted by {drift:.3e} at cycle {t}",
                        details={"cycle": t, "drift": drift, "tolerance": self.tolerance}
                    )
                drift_cycles.append(t)
                logger.warning("[Simulator] NumericalDrift at cycle %d: |sum - 1| = %.3e", t, drift)

        return CohortTrace(state_space, trace, self.tolerance, max_drift, tuple(drift_cycles))

    def _check_initial(self, initial, state_space, size):
        if initial is None:
            return state_space.initial_distribution()

        m0 = np.asarray(initial, dtype=float)
        if m0.ndim != 1:
            raise InvalidDimensionError(f"Initial distribution must be a vector, got shape {m0.shape}")
        if m0.shape[0] != size:
            raise InvalidDimensionError(
                f"Initial distribution has {m0.shape[0]} entries but the matrix is {size}x{size}"
            )
        if np.any(m0 < 0) or np.any(m0 > 1):
            raise InvalidParameterError("Initial distribution entries must lie in [0, 1]")
        if abs(math.fsum(m0) - 1.0) > self.tolerance:
            raise InvalidParameterError(
                f"Initial distribution must sum to 1, got {math.fsum(m0):.12f}"
            )
        return m0


# ============================================
# MARKOV CHAIN ANALYZER
# ============================================

class MarkovChainAnalyzer:
    """
    Closed-form analysis of the transition matrix.

    Computes:
    - N-step transition probabilities: P(n) = Pⁿ
    - Fundamental matrix: N = (I - Q)⁻¹ for absorbing chain analysis
    - Absorption probabilities: B = N·R
    - Expected cycles before absorption: N·1 (counting the starting cycle)
    """

    @staticmethod
    def n_step_transition(matrix: TransitionMatrix, n: int) -> np.ndarray:
        """Chapman-Kolmogorov: P(n) = P^n"""
        n = validate_cycles(n, "n")
        return np.linalg.matrix_power(matrix.values, n)

    @staticmethod
    def absorption_analysis(matrix: TransitionMatrix) -> Dict:
        """
        Analyze the absorbing chain in canonical form P = [[Q  R], [0  I]].

        (Kemeny & Snell, 1960)
        """
        P = matrix.values
        names = matrix.state_space.names
        n = P.shape[0]

        absorbing = [i for i in range(n) if abs(P[i, i] - 1.0) < 1e-12]
        transient = [i for i in range(n) if i not in absorbing]

        if not absorbing or not transient:
            raise InvalidParameterError(
                "Absorption analysis needs at least one absorbing and one transient state"
            )

        t = len(transient)
        Q = P[np.ix_(transient, transient)]
        R = P[np.ix_(transient, absorbing)]

        try:
            N = np.linalg.inv(np.eye(t) - Q)
        except np.linalg.LinAlgError:
            raise InvalidParameterError(
                "Transient states never reach an absorbing state (I - Q is singular)"
            )

        B = N @ R
        expected_cycles = N @ np.ones(t)

        return {
            "transient_states": [names[i] for i in transient],
            "absorbing_states": [names[i] for i in absorbing],
            "absorption_probabilities": {
                names[transient[i]]: {
                    names[absorbing[j]]: float(B[i, j]) for j in range(len(absorbing))
                }
                for i in range(t)
            },
            "expected_cycles_to_absorption": {
                names[transient[i]]: float(expected_cycles[i]) for i in range(t)
            },
            "fundamental_matrix_trace": float(np.trace(N)),
        }
