"""
One-Way Sensitivity Analysis
============================
Re-evaluates the cohort model with exactly one parameter moved to its Low
or High bound while every other parameter stays at the shared base case,
and collects the designated outcome per (parameter, level) into a tornado
table.

References:
- Briggs, Claxton & Sculpher (2006) - Ch. 4, Deterministic sensitivity analysis
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from config import Config
from exceptions import InvalidParameterError
from markov_model import ModelParameters, PARAMETER_SYMBOLS, resolve_parameter_name
from validators import validate_bounds, validate_outcome

logger = logging.getLogger(__name__)

LEVELS = ("base", "low", "high")


@dataclass(frozen=True)
class SensitivityRange:
    """Bounds for one parameter; ``base_case`` is filled in from the base record"""
    parameter: str
    low: float
    high: float
    base_case: Optional[float] = None


@dataclass(frozen=True)
class TornadoRow:
    parameter: str
    base_value: float
    low_value: float
    high_value: float
    low: float
    base: float
    high: float

    @property
    def swing(self) -> float:
        return abs(self.high - self.low)

    def to_dict(self) -> Dict:
        return {
            "parameter": self.parameter,
            "base_value": self.base_value,
            "low_value": self.low_value,
            "high_value": self.high_value,
            "low": self.low,
            "base": self.base,
            "high": self.high,
            "swing": self.swing,
        }


@dataclass(frozen=True)
class TornadoTable:
    """Rows in the order the parameters were requested"""
    outcome: str
    base_outcome: float
    rows: Tuple[TornadoRow, ...]

    def __iter__(self):
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)

    @property
    def parameters(self) -> List[str]:
        return [row.parameter for row in self.rows]

    def row(self, parameter: str) -> TornadoRow:
        for r in self.rows:
            if r.parameter == parameter:
                return r
        raise KeyError(parameter)

    def to_dict(self) -> Dict:
        return {
            "outcome": self.outcome,
            "base_outcome": self.base_outcome,
            "rows": [r.to_dict() for r in self.rows],
        }


class SensitivityDriver:
    """
    Runs one-way sensitivity analysis over a black-box model evaluation.

    ``evaluate`` takes a ModelParameters and returns either an
    OutcomeSummary or anything carrying one as ``.summary``. Evaluations are
    independent, so with ``max_workers > 1`` they go to a thread pool and are
    collected by (parameter, level).
    """

    def __init__(self, evaluate: Callable, outcome: Optional[str] = None,
                 max_workers: Optional[int] = None):
        self.evaluate = evaluate
        self.outcome = validate_outcome(outcome)
        self.max_workers = max(1, int(max_workers or Config.SENSITIVITY_WORKERS))

    @staticmethod
    def variants(base_case: ModelParameters, target: str, low: float, high: float
                 ) -> Dict[str, ModelParameters]:
        """The three records for one target; only ``target`` differs from base"""
        name = resolve_parameter_name(target)
        return {
            "base": base_case,
            "low": base_case.replace(**{name: low}),
            "high": base_case.replace(**{name: high}),
        }

    def run(self, base_case: ModelParameters, targets: Sequence[str],
            bounds: Mapping[str, Tuple[float, float]]) -> TornadoTable:
        targets = list(targets)

        # Resolve every name before evaluating anything
        resolved = [(target, resolve_parameter_name(target)) for target in targets]
        seen = set()
        for target, name in resolved:
            if name in seen:
                raise InvalidParameterError(f"Parameter '{target}' requested more than once")
            seen.add(name)

        jobs = {}
        settings = {}
        for target, name in resolved:
            low, high = validate_bounds(target, self._lookup_bounds(bounds, target, name))
            settings[target] = (getattr(base_case, name), low, high)
            for level, variant in self.variants(base_case, name, low, high).items():
                jobs[(target, level)] = variant

        logger.info("[Sensitivity] %d parameter(s) x %d levels, outcome=%s, workers=%d",
                    len(resolved), len(LEVELS), self.outcome, self.max_workers)

        results = self._evaluate_all(jobs)

        rows = tuple(
            TornadoRow(
                parameter=target,
                base_value=settings[target][0],
                low_value=settings[target][1],
                high_value=settings[target][2],
                low=results[(target, "low")],
                base=results[(target, "base")],
                high=results[(target, "high")],
            )
            for target, _ in resolved
        )

        if rows:
            base_outcome = rows[0].base
        else:
            base_outcome = self._extract(self.evaluate(base_case))

        return TornadoTable(self.outcome, base_outcome, rows)

    def run_ranges(self, base_case: ModelParameters,
                   ranges: Iterable[SensitivityRange]) -> TornadoTable:
        ranges = list(ranges)
        for r in ranges:
            if r.base_case is None:
                continue
            current = getattr(base_case, resolve_parameter_name(r.parameter))
            if r.base_case != current:
                raise InvalidParameterError(
                    f"Range for '{r.parameter}' declares base case {r.base_case}, "
                    f"but the base record holds {current}"
                )
        return self.run(
            base_case,
            [r.parameter for r in ranges],
            {r.parameter: (r.low, r.high) for r in ranges},
        )

    def _evaluate_all(self, jobs: Dict[Tuple[str, str], ModelParameters]
                      ) -> Dict[Tuple[str, str], float]:
        if self.max_workers == 1:
            return {key: self._extract(self.evaluate(variant)) for key, variant in jobs.items()}

        results = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self.evaluate, variant): key for key, variant in jobs.items()}
            for future in as_completed(futures):
                results[futures[future]] = self._extract(future.result())
        return results

    def _extract(self, result) -> float:
        summary = getattr(result, "summary", result)
        return float(getattr(summary, self.outcome))

    @staticmethod
    def _lookup_bounds(bounds, target, name):
        if target in bounds:
            return bounds[target]
        if name in bounds:
            return bounds[name]
        for symbol, field_name in PARAMETER_SYMBOLS.items():
            if field_name == name and symbol in bounds:
                return bounds[symbol]
        return None
