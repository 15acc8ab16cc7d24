import threading

import pytest

from exceptions import InvalidParameterError, UnknownParameterError
from markov_model import ModelParameters
from cohort_model import MarkovCohortModel
from cache_manager import CacheManager
from sensitivity import SensitivityDriver, SensitivityRange, TornadoRow, TornadoTable


class RecordingModel:
    """Wraps a real model and keeps every parameter record it was asked to evaluate"""

    def __init__(self):
        self.model = MarkovCohortModel()
        self.seen = []
        self._lock = threading.Lock()

    def evaluate(self, params):
        with self._lock:
            self.seen.append(params)
        return self.model.evaluate(params)


def test_variants_only_move_the_target(base_case):
    variants = SensitivityDriver.variants(base_case, "p.SD", 0.05, 0.2)
    assert variants["base"] is base_case
    for level, value in (("low", 0.05), ("high", 0.2)):
        variant = variants[level].to_dict()
        expected = dict(base_case.to_dict(), p_sd=value)
        assert variant == expected


def test_every_evaluated_variant_differs_from_base_in_at_most_one_field(base_case):
    recorder = RecordingModel()
    bounds = {"p.HD": (0.01, 0.04), "p.HS": (0.02, 0.1), "p.SD": (0.05, 0.2)}
    SensitivityDriver(recorder.evaluate).run(base_case, list(bounds), bounds)

    assert len(recorder.seen) == 9
    base = base_case.to_dict()
    for params in recorder.seen:
        changed = [k for k, v in params.to_dict().items() if base[k] != v]
        assert len(changed) <= 1


def test_p_sd_high_lowers_discounted_cost(base_case):
    table = SensitivityDriver(MarkovCohortModel().evaluate).run(
        base_case, ["p.SD"], {"p.SD": (0.05, 0.2)}
    )
    row = table.row("p.SD")
    assert row.base_value == 0.1
    assert row.low_value == 0.05 and row.high_value == 0.2
    assert row.high < row.base < row.low
    assert table.outcome == "total_cost"
    assert table.base_outcome == row.base


def test_rows_follow_requested_order(base_case):
    bounds = {"p_sd": (0.05, 0.2), "p.HD": (0.01, 0.04), "c.S": (50, 200)}
    table = SensitivityDriver(MarkovCohortModel().evaluate).run(
        base_case, ["c.S", "p_sd", "p.HD"], bounds
    )
    assert table.parameters == ["c.S", "p_sd", "p.HD"]
    bases = {row.base for row in table}
    assert len(bases) == 1


def test_bounds_may_be_keyed_by_field_or_symbol(base_case):
    driver = SensitivityDriver(MarkovCohortModel().evaluate)
    by_symbol = driver.run(base_case, ["p_sd"], {"p.SD": (0.05, 0.2)})
    by_field = driver.run(base_case, ["p.SD"], {"p_sd": (0.05, 0.2)})
    assert by_symbol.rows[0].high == by_field.rows[0].high


def test_parallel_matches_sequential(base_case):
    bounds = {"p.HD": (0.01, 0.04), "p.HS": (0.02, 0.1), "p.SD": (0.05, 0.2)}
    sequential_cache = CacheManager(max_size=64)
    parallel_cache = CacheManager(max_size=64)
    pooled_model = MarkovCohortModel(cache=parallel_cache)
    workers = []

    def evaluate_in_pool(params):
        workers.append(threading.current_thread())
        return pooled_model.evaluate(params)

    sequential = SensitivityDriver(
        MarkovCohortModel(cache=sequential_cache).evaluate, max_workers=1
    ).run(base_case, list(bounds), bounds)
    parallel = SensitivityDriver(evaluate_in_pool, max_workers=4).run(
        base_case, list(bounds), bounds
    )

    assert sequential.to_dict() == parallel.to_dict()
    assert len(workers) == 9
    assert threading.main_thread() not in workers
    assert parallel_cache.get_stats()["misses"] >= 7
    assert len(parallel_cache) == 7


def test_alternative_outcome(base_case):
    table = SensitivityDriver(MarkovCohortModel().evaluate, outcome="life_expectancy").run(
        base_case, ["p.HD"], {"p.HD": (0.01, 0.04)}
    )
    row = table.rows[0]
    assert row.low > row.base > row.high


def test_unknown_target_fails_before_any_evaluation(base_case):
    recorder = RecordingModel()
    with pytest.raises(UnknownParameterError):
        SensitivityDriver(recorder.evaluate).run(
            base_case, ["p.SD", "p.XY"], {"p.SD": (0.05, 0.2), "p.XY": (0, 1)}
        )
    assert recorder.seen == []


def test_missing_or_invalid_bounds(base_case):
    driver = SensitivityDriver(MarkovCohortModel().evaluate)
    with pytest.raises(InvalidParameterError):
        driver.run(base_case, ["p.SD"], {})
    with pytest.raises(InvalidParameterError):
        driver.run(base_case, ["p.SD"], {"p.SD": (0.05, 1.5)})
    with pytest.raises(InvalidParameterError):
        driver.run(base_case, ["p.SD", "p_sd"], {"p.SD": (0.05, 0.2)})
    with pytest.raises(InvalidParameterError):
        SensitivityDriver(MarkovCohortModel().evaluate, outcome="net_benefit")


def test_run_ranges(base_case):
    driver = SensitivityDriver(MarkovCohortModel().evaluate)
    table = driver.run_ranges(base_case, [SensitivityRange("p.SD", 0.05, 0.2, base_case=0.1)])
    assert table.parameters == ["p.SD"]

    with pytest.raises(InvalidParameterError):
        driver.run_ranges(base_case, [SensitivityRange("p.SD", 0.05, 0.2, base_case=0.3)])


def test_empty_target_list_still_reports_base(base_case):
    table = SensitivityDriver(MarkovCohortModel().evaluate).run(base_case, [], {})
    assert len(table) == 0
    assert table.base_outcome == MarkovCohortModel().evaluate(base_case).summary.total_cost


def test_tornado_row_swing():
    row = TornadoRow("p.SD", 0.1, 0.05, 0.2, low=12.0, base=10.0, high=7.5)
    assert row.swing == 4.5
    table = TornadoTable("total_cost", 10.0, (row,))
    assert table.to_dict()["rows"][0]["swing"] == 4.5
    with pytest.raises(KeyError):
        table.row("p.HD")
