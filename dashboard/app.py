"""
Markov Cohort Model - Streamlit Dashboard
Features: Cohort Trace, Survival & Prevalence Curves, Tornado Diagram, Download Reports
"""

import os

import pandas as pd
import requests
import streamlit as st

# Backend URL configuration (for cloud deployment)
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:5000")


# Page configuration
st.set_page_config(
    page_title="Markov Cohort Model",
    page_icon="📈",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.title("Markov Cohort Model")
st.caption("Healthy → Sick → Dead cohort trace with discounted costs, QALYs and one-way sensitivity analysis")


def fetch_defaults():
    try:
        return requests.get(f"{BACKEND_URL}/parameters/default", timeout=5).json()
    except requests.exceptions.ConnectionError:
        return None


# ============================================
# SIDEBAR - PARAMETERS
# ============================================

defaults = fetch_defaults()

with st.sidebar:
    st.markdown("### ⚙️ Parameters")
    if defaults is None:
        st.error("Backend: **Offline**")
        st.caption("Start with: `python backend-python/server.py`")
        st.stop()

    base = defaults["parameters"]
    params = {}
    st.markdown("**Transition probabilities**")
    params["p_hd"] = st.number_input("p.HD (Healthy → Dead)", 0.0, 1.0, base["p_hd"], 0.005, format="%.3f")
    params["p_hs"] = st.number_input("p.HS (Healthy → Sick)", 0.0, 1.0, base["p_hs"], 0.005, format="%.3f")
    params["p_sd"] = st.number_input("p.SD (Sick → Dead)", 0.0, 1.0, base["p_sd"], 0.005, format="%.3f")

    st.markdown("**Costs per cycle**")
    params["c_h"] = st.number_input("c.H", 0.0, value=base["c_h"], step=10.0)
    params["c_s"] = st.number_input("c.S", 0.0, value=base["c_s"], step=10.0)
    params["c_d"] = st.number_input("c.D", 0.0, value=base["c_d"], step=10.0)

    st.markdown("**Utilities per cycle**")
    params["u_h"] = st.number_input("u.H", 0.0, 1.0, base["u_h"], 0.05)
    params["u_s"] = st.number_input("u.S", 0.0, 1.0, base["u_s"], 0.05)
    params["u_d"] = st.number_input("u.D", 0.0, 1.0, base["u_d"], 0.05)

    st.markdown("**Horizon**")
    params["discount_rate"] = st.slider("Discount rate", 0.0, 0.10, base["discount_rate"], 0.005)
    params["n_cycles"] = st.slider("Cycles", 0, 120, base["n_cycles"])

    st.markdown("---")
    st.markdown("### 💻 System Status")
    try:
        health = requests.get(f"{BACKEND_URL}/health", timeout=2).json()
        st.success(f"Backend: **Online** (v{health.get('version', '?')})")
        cache_stats = health.get("cache", {})
        st.caption(f"Cache: {cache_stats.get('entries', 0)} entries, "
                   f"{cache_stats.get('hit_rate_percent', 0)}% hit rate")
    except requests.exceptions.ConnectionError:
        st.error("Backend: **Offline**")


# ============================================
# MAIN CONTENT - TABBED INTERFACE
# ============================================

tab_trace, tab_tornado = st.tabs(["📈 Cohort Trace", "🌪️ Tornado"])

with tab_trace:
    try:
        resp = requests.post(f"{BACKEND_URL}/run", json={"parameters": params}, timeout=30)
        run = resp.json()
    except requests.exceptions.ConnectionError:
        st.error("⚠️ Backend unreachable. Start: python backend-python/server.py")
        st.stop()

    if resp.status_code != 200:
        st.error(f"Model run failed: {run.get('error', resp.text)}")
    else:
        summary = run["summary"]
        m1, m2, m3 = st.columns(3)
        m1.metric("Discounted Cost", f"{summary['total_cost']:,.2f}")
        m2.metric("Discounted QALYs", f"{summary['total_utility']:.3f}")
        m3.metric("Life Expectancy (cycles)", f"{summary['life_expectancy']:.2f}")

        drift = summary["numerical_drift"]
        if drift["drift_cycles"]:
            st.warning(f"Numerical drift in {len(drift['drift_cycles'])} cycle(s), "
                       f"max |Σ - 1| = {drift['max_drift']:.2e}")

        df_trace = pd.DataFrame(run["trace"]).set_index("cycle")
        st.markdown("##### State occupancy")
        st.line_chart(df_trace)

        col_surv, col_prev = st.columns(2)
        with col_surv:
            st.markdown("##### Overall survival")
            st.line_chart(pd.DataFrame(run["survival"]).set_index("cycle"))
        with col_prev:
            st.markdown("##### Prevalence of Sick among survivors")
            st.line_chart(pd.DataFrame(run["prevalence"]).set_index("cycle"))

        st.download_button(
            "📥 Download trace (CSV)",
            df_trace.to_csv(),
            file_name="cohort_trace.csv",
            mime="text/csv"
        )

with tab_tornado:
    st.info("Each parameter is moved to its Low and High value while all others stay at the values in the sidebar.")

    targets = defaults["default_sensitivity_targets"]
    symbols = defaults["symbols"]
    outcome = st.selectbox("Outcome", ["total_cost", "total_utility", "life_expectancy"])

    ranges = {}
    for target in targets:
        current = params[symbols[target]]
        c_low, c_high = st.columns(2)
        low = c_low.number_input(f"{target} low", 0.0, 1.0, round(current * 0.5, 4), format="%.4f")
        high = c_high.number_input(f"{target} high", 0.0, 1.0, min(1.0, round(current * 2.0, 4)), format="%.4f")
        ranges[target] = [low, high]

    if st.button("🚀 Run Sensitivity Analysis", type="primary"):
        with st.spinner("Evaluating variants..."):
            try:
                resp = requests.post(
                    f"{BACKEND_URL}/sensitivity",
                    json={"parameters": params, "ranges": ranges, "outcome": outcome, "sort": True},
                    timeout=60
                )
                if resp.status_code == 200:
                    st.session_state.tornado = resp.json()
                else:
                    st.error(f"Analysis failed: {resp.json().get('error', resp.text)}")
            except requests.exceptions.ConnectionError as e:
                st.error(f"Connection error: {str(e)}")

    if "tornado" in st.session_state:
        res = st.session_state.tornado
        rows = pd.DataFrame(res["rows"])
        st.metric(f"Base-case {res['outcome']}", f"{res['base_outcome']:,.3f}")

        chart_data = pd.DataFrame({
            "Parameter": rows["parameter"],
            "Low - Base": rows["low"] - rows["base"],
            "High - Base": rows["high"] - rows["base"],
        })
        st.bar_chart(chart_data.set_index("Parameter"), horizontal=True, color=["#94a3b8", "#10b981"])
        st.dataframe(rows, use_container_width=True, hide_index=True)
