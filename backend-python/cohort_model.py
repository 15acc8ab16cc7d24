"""
Unified Markov Cohort Model
===========================
Pipeline: ModelParameters → TransitionMatrixBuilder → CohortTraceSimulator
→ OutcomeAggregator, plus one-way sensitivity analysis over that pipeline.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Mapping, Optional, Sequence, Tuple

from cache_manager import cache, CacheManager
from markov_model import (
    StateSpace, ModelParameters, TransitionMatrix, TransitionMatrixBuilder,
    CohortTrace, CohortTraceSimulator, MarkovChainAnalyzer
)
from outcomes import OutcomeAggregator, OutcomeSummary, discount_weights
from sensitivity import SensitivityDriver, TornadoTable
from reporting import (
    trace_table, survival_series, prevalence_series, frame_to_records
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ModelResult:
    """Everything one evaluation produced"""
    parameters: ModelParameters
    matrix: TransitionMatrix
    trace: CohortTrace
    summary: OutcomeSummary


class MarkovCohortModel:
    """
    Markov cohort model combining:
    - Transition matrix construction
    - Cohort trace propagation
    - Discounted cost / QALY / life-expectancy aggregation
    - One-way sensitivity analysis
    - Absorbing chain analysis
    """

    def __init__(self, state_space: Optional[StateSpace] = None,
                 cache: Optional[CacheManager] = None,
                 strict_drift: Optional[bool] = None,
                 tolerance: Optional[float] = None):
        self.state_space = state_space or StateSpace()
        self.builder = TransitionMatrixBuilder(self.state_space)
        self.simulator = CohortTraceSimulator(tolerance=tolerance, strict=strict_drift)
        self.aggregator = OutcomeAggregator(self.state_space)
        self.chain_analyzer = MarkovChainAnalyzer()
        self.cache = cache

    def evaluate(self, params: ModelParameters, initial: Optional[Sequence[float]] = None
                 ) -> ModelResult:
        """Run the full pipeline; identical parameter records hit the cache"""
        if self.cache is None or initial is not None:
            return self._evaluate(params, initial)

        key = ("evaluate", self.state_space, self.simulator.tolerance, self.simulator.strict, params)
        return self.cache.memoize(key, lambda: self._evaluate(params))

    def _evaluate(self, params: ModelParameters, initial: Optional[Sequence[float]] = None
                  ) -> ModelResult:
        matrix = self.builder.build(params)
        trace = self.simulator.simulate(matrix, initial, params.n_cycles)
        weights = discount_weights(params.discount_rate, params.n_cycles)
        summary = self.aggregator.aggregate(trace, params.costs(), params.utilities(), weights)
        return ModelResult(params, matrix, trace, summary)

    def run(self, params: ModelParameters) -> Dict:
        """JSON-ready model run: summary scalars, matrix and per-cycle tables"""
        result = self.evaluate(params)

        return {
            "engine": "Markov Cohort Model v1.0",
            "states": list(self.state_space.names),
            "parameters": params.to_dict(),
            "summary": result.summary.to_dict(),
            "transition_matrix": result.matrix.to_dict(),
            "trace": frame_to_records(trace_table(result.trace)),
            "survival": frame_to_records(survival_series(result.summary)),
            "prevalence": frame_to_records(prevalence_series(result.summary)),
            "timestamp": datetime.now().isoformat()
        }

    def sensitivity(self, base_case: ModelParameters, targets: Sequence[str],
                    bounds: Mapping[str, Tuple[float, float]],
                    outcome: Optional[str] = None,
                    max_workers: Optional[int] = None) -> TornadoTable:
        driver = SensitivityDriver(self.evaluate, outcome=outcome, max_workers=max_workers)
        return driver.run(base_case, targets, bounds)

    def absorption(self, params: ModelParameters) -> Dict:
        return self.chain_analyzer.absorption_analysis(self.builder.build(params))


# Global instance
cohort_model = MarkovCohortModel(cache=cache)


# Convenience function
def run_cohort_model(parameters: Optional[Mapping] = None, **overrides) -> Dict:
    """Quick access to a model run from a (partial) parameter mapping"""
    params = ModelParameters.from_dict(dict(parameters or {}, **overrides))
    return cohort_model.run(params)
