"""
Outcome Aggregation for the Markov Cohort Model
Maps a cohort trace onto expected costs, QALYs, survival and prevalence.

- Expected reward per cycle: r(t) = m(t) · v (occupancy dot per-state value)
- Present value: Σ_t r(t) / (1 + d)^t
- Life expectancy: Σ_t S(t), undiscounted, in cycles
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from exceptions import DimensionMismatchError
from markov_model import CohortTrace, StateSpace, SICK
from validators import validate_discount_rate, validate_cycles

logger = logging.getLogger(__name__)

Rewards = Union[Mapping[str, float], Sequence[float], np.ndarray]


def discount_weights(rate: float, n_cycles: int) -> np.ndarray:
    """weight[t] = 1 / (1 + rate)^t for t = 0..n_cycles"""
    rate = validate_discount_rate(rate)
    n_cycles = validate_cycles(n_cycles)
    weights = 1.0 / (1.0 + rate) ** np.arange(n_cycles + 1)
    weights.setflags(write=False)
    return weights


@dataclass(frozen=True, eq=False)
class OutcomeSummary:
    """Discounted totals plus the per-cycle series they were built from"""
    total_cost: float
    total_utility: float
    life_expectancy: float
    cost: np.ndarray
    utility: np.ndarray
    survival: np.ndarray
    prevalence: np.ndarray
    max_drift: float = 0.0
    drift_cycles: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def n_cycles(self) -> int:
        return len(self.survival) - 1

    def to_dict(self) -> Dict:
        return {
            "total_cost": self.total_cost,
            "total_utility": self.total_utility,
            "life_expectancy": self.life_expectancy,
            "n_cycles": self.n_cycles,
            "numerical_drift": {
                "max_drift": self.max_drift,
                "drift_cycles": list(self.drift_cycles),
            },
        }


class OutcomeAggregator:
    """
    Aggregates a CohortTrace into an OutcomeSummary.

    Survival is derived once, as 1 - occupancy of the state space's death
    state. Prevalence is Sick occupancy among survivors and is NaN once
    nobody survives.
    """

    def __init__(self, state_space: Optional[StateSpace] = None,
                 prevalence_state: Optional[str] = SICK):
        self.state_space = state_space or StateSpace()
        if prevalence_state is not None:
            self.state_space.index(prevalence_state)
        self.prevalence_state = prevalence_state

    def aggregate(self, trace: Union[CohortTrace, np.ndarray], costs: Rewards,
                  utilities: Rewards, weights: Sequence[float]) -> OutcomeSummary:
        m = trace.values if isinstance(trace, CohortTrace) else np.asarray(trace, dtype=float)
        n_states = len(self.state_space)

        if m.ndim != 2 or m.shape[1] != n_states:
            raise DimensionMismatchError(
                f"Trace has shape {m.shape}, expected (cycles, {n_states})"
            )

        c = self.state_space.vector(costs, "cost vector")
        u = self.state_space.vector(utilities, "utility vector")
        w = np.asarray(weights, dtype=float)
        if w.ndim != 1 or w.shape[0] != m.shape[0]:
            raise DimensionMismatchError(
                f"Discount weights have length {w.shape[0] if w.ndim else 0}, "
                f"trace has {m.shape[0]} cycles"
            )

        cost = m @ c
        utility = m @ u

        death = self.state_space.death_state
        if death is None:
            survival = np.ones(m.shape[0])
        else:
            survival = 1.0 - m[:, self.state_space.index(death)]

        prevalence = np.full(m.shape[0], np.nan)
        if self.prevalence_state is not None:
            sick = m[:, self.state_space.index(self.prevalence_state)]
            np.divide(sick, survival, out=prevalence, where=survival > 0)

        for arr in (cost, utility, survival, prevalence):
            arr.setflags(write=False)

        summary = OutcomeSummary(
            total_cost=math.fsum(cost * w),
            total_utility=math.fsum(utility * w),
            life_expectancy=math.fsum(survival),
            cost=cost,
            utility=utility,
            survival=survival,
            prevalence=prevalence,
            max_drift=getattr(trace, "max_drift", 0.0),
            drift_cycles=getattr(trace, "drift_cycles", ()),
        )
        logger.debug("[Outcomes] cost=%.4f qaly=%.4f le=%.4f",
                     summary.total_cost, summary.total_utility, summary.life_expectancy)
        return summary
