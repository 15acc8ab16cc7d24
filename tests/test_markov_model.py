import numpy as np
import pytest

from exceptions import (
    InvalidParameterError, InvalidDimensionError, DimensionMismatchError,
    UnknownParameterError, NumericalDriftError
)
from markov_model import (
    StateSpace, ModelParameters, TransitionMatrixBuilder, CohortTraceSimulator,
    MarkovChainAnalyzer, resolve_parameter_name
)


def test_state_space_order_and_lookup():
    space = StateSpace()
    assert space.names == ("Healthy", "Sick", "Dead")
    assert space.index("Dead") == 2
    assert list(space.initial_distribution()) == [1.0, 0.0, 0.0]


def test_state_space_rejects_empty_and_duplicates():
    with pytest.raises(InvalidParameterError):
        StateSpace([], death_state=None)
    with pytest.raises(InvalidParameterError):
        StateSpace(["A", "A"], death_state=None)
    with pytest.raises(InvalidDimensionError):
        StateSpace(["A", "B"], death_state="Dead")


def test_state_space_death_state_defaults_to_dead_when_present():
    assert StateSpace().death_state == "Dead"
    assert StateSpace(["Well", "Ill"]).death_state is None
    assert StateSpace(["Well", "Dead"]).death_state == "Dead"
    assert StateSpace(["Well", "Dead"], death_state=None).death_state is None


def test_state_space_vector_from_mapping():
    space = StateSpace()
    vec = space.vector({"Dead": 0, "Healthy": 400, "Sick": 100})
    assert list(vec) == [400.0, 100.0, 0.0]
    assert not vec.flags.writeable

    with pytest.raises(DimensionMismatchError):
        space.vector({"Healthy": 1, "Sick": 2})
    with pytest.raises(DimensionMismatchError):
        space.vector([1, 2])


def test_parameters_validated_on_construction():
    with pytest.raises(InvalidParameterError):
        ModelParameters(p_sd=1.2)
    with pytest.raises(InvalidParameterError):
        ModelParameters(c_s=-1)
    with pytest.raises(InvalidParameterError):
        ModelParameters(discount_rate=-0.01)
    with pytest.raises(InvalidParameterError):
        ModelParameters(n_cycles=-1)
    with pytest.raises(InvalidParameterError):
        ModelParameters(p_hd=0.6, p_hs=0.5)


def test_replace_accepts_symbols_and_leaves_original(base_case):
    variant = base_case.replace(**{"p.SD": 0.2})
    assert variant.p_sd == 0.2
    assert base_case.p_sd == 0.1
    assert variant.replace(p_sd=0.1) == base_case

    with pytest.raises(UnknownParameterError):
        base_case.replace(p_xx=0.1)


def test_from_dict_fills_missing_fields(base_case):
    params = ModelParameters.from_dict({"c.S": 250, "n_cycles": 10}, base=base_case)
    assert params.c_s == 250
    assert params.n_cycles == 10
    assert params.p_hd == base_case.p_hd
    assert resolve_parameter_name("u.H") == "u_h"


def test_explicit_null_is_rejected_not_defaulted(base_case):
    with pytest.raises(InvalidParameterError):
        ModelParameters.from_dict({"n_cycles": None}, base=base_case)
    with pytest.raises(InvalidParameterError):
        base_case.replace(discount_rate=None)


def test_canonical_matrix_rows_sum_to_one(base_case):
    matrix = TransitionMatrixBuilder().build(base_case)
    np.testing.assert_allclose(matrix.values.sum(axis=1), 1.0, atol=1e-9)
    assert matrix.probability("Healthy", "Healthy") == pytest.approx(0.93)
    assert matrix.probability("Sick", "Healthy") == 0.0
    assert matrix.probability("Sick", "Sick") == pytest.approx(0.9)
    assert matrix.probability("Dead", "Dead") == 1.0


@pytest.mark.parametrize("p_hd,p_hs,p_sd", [
    (0.0, 0.0, 0.0), (1.0, 0.0, 1.0), (0.3, 0.7, 0.5), (0.123, 0.456, 0.789),
])
def test_matrix_rows_stochastic_for_valid_parameters(p_hd, p_hs, p_sd):
    params = ModelParameters(p_hd=p_hd, p_hs=p_hs, p_sd=p_sd)
    matrix = TransitionMatrixBuilder().build(params)
    np.testing.assert_allclose(matrix.values.sum(axis=1), 1.0, atol=1e-9)
    assert (matrix.values >= 0).all()


def test_builder_rejects_bad_rows():
    builder = TransitionMatrixBuilder()
    with pytest.raises(InvalidParameterError):
        builder.from_probabilities({"Healthy": {"Sick": 0.7, "Dead": 0.4}})
    with pytest.raises(InvalidParameterError):
        builder.from_probabilities({"Healthy": {"Sick": -0.1}})
    with pytest.raises(InvalidParameterError):
        builder.from_probabilities({"Healthy": {"Healthy": 0.5}})
    with pytest.raises(InvalidDimensionError):
        builder.from_probabilities({"Healthy": {"Cured": 0.1}})


def test_one_cycle_distribution(base_case):
    matrix = TransitionMatrixBuilder().build(base_case)
    trace = CohortTraceSimulator(tolerance=1e-9).simulate(matrix, [1, 0, 0], 1)
    np.testing.assert_allclose(trace[1], [0.93, 0.05, 0.02], atol=1e-12)


@pytest.mark.parametrize("n_cycles", [0, 1, 5, 60, 500])
def test_trace_length_and_mass_conservation(base_case, n_cycles):
    matrix = TransitionMatrixBuilder().build(base_case)
    trace = CohortTraceSimulator(tolerance=1e-9, strict=False).simulate(matrix, None, n_cycles)
    assert len(trace) == n_cycles + 1
    np.testing.assert_allclose(trace.values.sum(axis=1), 1.0, atol=1e-9)
    assert (trace.values >= 0).all() and (trace.values <= 1).all()
    assert not trace.has_drift


def test_zero_cycles_returns_initial_distribution(base_case):
    matrix = TransitionMatrixBuilder().build(base_case)
    trace = CohortTraceSimulator().simulate(matrix, [0.5, 0.5, 0.0], 0)
    assert trace.values.shape == (1, 3)
    assert list(trace[0]) == [0.5, 0.5, 0.0]


def test_unreachable_absorbing_state_stays_empty():
    space = StateSpace(["A", "B", "C"], death_state="C")
    matrix = TransitionMatrixBuilder(space).from_probabilities({
        "A": {"B": 0.3},
        "B": {"A": 0.2},
    })
    assert matrix.probability("C", "C") == 1.0

    trace = CohortTraceSimulator().simulate(matrix, [1, 0, 0], 100)
    assert (trace.state("C") == 0).all()


def test_simulator_dimension_checks(base_case):
    matrix = TransitionMatrixBuilder().build(base_case)
    simulator = CohortTraceSimulator()
    with pytest.raises(InvalidDimensionError):
        simulator.simulate(matrix, [1, 0], 3)
    with pytest.raises(InvalidDimensionError):
        simulator.simulate(np.ones((2, 3)) / 3, [1, 0], 3)
    with pytest.raises(InvalidParameterError):
        simulator.simulate(matrix, [0.5, 0.2, 0.0], 3)


def test_numerical_drift_is_recorded_not_raised():
    leaky = np.array([[0.5, 0.500001], [0.0, 1.0]])
    trace = CohortTraceSimulator(tolerance=1e-9, strict=False).simulate(leaky, [1, 0], 3)
    assert trace.has_drift
    assert trace.drift_cycles == (1, 2, 3)
    assert trace.max_drift > 1e-9


def test_numerical_drift_raises_in_strict_mode():
    leaky = np.array([[0.5, 0.500001], [0.0, 1.0]])
    with pytest.raises(NumericalDriftError) as exc:
        CohortTraceSimulator(tolerance=1e-9, strict=True).simulate(leaky, [1, 0], 3)
    assert exc.value.details["cycle"] == 1


def test_absorption_analysis(base_case):
    matrix = TransitionMatrixBuilder().build(base_case)
    result = MarkovChainAnalyzer.absorption_analysis(matrix)

    assert result["absorbing_states"] == ["Dead"]
    assert result["expected_cycles_to_absorption"]["Sick"] == pytest.approx(10.0)
    assert result["expected_cycles_to_absorption"]["Healthy"] == pytest.approx(1 / 0.07 + 0.05 / 0.007)
    assert result["absorption_probabilities"]["Healthy"]["Dead"] == pytest.approx(1.0)


def test_n_step_transition_matches_trace(base_case):
    matrix = TransitionMatrixBuilder().build(base_case)
    trace = CohortTraceSimulator().simulate(matrix, None, 12)
    p12 = MarkovChainAnalyzer.n_step_transition(matrix, 12)
    np.testing.assert_allclose(p12[0], trace[12], atol=1e-12)
