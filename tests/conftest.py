import pytest

from markov_model import ModelParameters


@pytest.fixture
def base_case():
    return ModelParameters(
        p_hd=0.02, p_hs=0.05, p_sd=0.1,
        c_h=400, c_s=100, c_d=0,
        u_h=0.8, u_s=0.5, u_d=0,
        discount_rate=0.03, n_cycles=60,
    )
