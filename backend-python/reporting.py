"""
Tabular Reporting for the Markov Cohort Model
Plain pandas tables for charts and downloads; no plotting here.
"""

import math
from typing import Dict, List

import numpy as np
import pandas as pd

from markov_model import CohortTrace
from outcomes import OutcomeSummary
from sensitivity import TornadoTable

TORNADO_COLUMNS = ["parameter", "base_value", "low_value", "high_value",
                   "low", "base", "high", "swing"]


def trace_table(trace: CohortTrace) -> pd.DataFrame:
    """(cycle, state) → probability, one column per state in declared order"""
    frame = pd.DataFrame(np.array(trace.values), columns=list(trace.state_space.names))
    frame.index.name = "cycle"
    return frame


def survival_series(summary: OutcomeSummary) -> pd.Series:
    series = pd.Series(np.array(summary.survival), name="survival")
    series.index.name = "cycle"
    return series


def prevalence_series(summary: OutcomeSummary) -> pd.Series:
    """Sick among survivors; NaN where nobody survives"""
    series = pd.Series(np.array(summary.prevalence), name="prevalence")
    series.index.name = "cycle"
    return series


def summary_table(summary: OutcomeSummary) -> pd.DataFrame:
    return pd.DataFrame([{
        "total_cost": summary.total_cost,
        "total_utility": summary.total_utility,
        "life_expectancy": summary.life_expectancy,
    }])


def tornado_table(table: TornadoTable, sort_by_swing: bool = False) -> pd.DataFrame:
    """
    Tornado rows as a DataFrame.

    Rows keep the requested parameter order unless ``sort_by_swing`` is set,
    in which case the widest |high - low| comes first (the usual tornado
    layout).
    """
    frame = pd.DataFrame([row.to_dict() for row in table.rows], columns=TORNADO_COLUMNS)
    if sort_by_swing and not frame.empty:
        frame = frame.sort_values("swing", ascending=False, kind="mergesort").reset_index(drop=True)
    return frame


def frame_to_records(frame) -> List[Dict]:
    """JSON-safe records; NaN becomes None"""
    if isinstance(frame, pd.Series):
        frame = frame.reset_index()
    elif frame.index.name is not None:
        frame = frame.reset_index()

    records = []
    for record in frame.to_dict(orient="records"):
        records.append({
            key: (None if isinstance(value, float) and math.isnan(value) else _plain(value))
            for key, value in record.items()
        })
    return records


def _plain(value):
    if isinstance(value, np.generic):
        return value.item()
    return value
