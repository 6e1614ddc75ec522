"""
Streamlit dashboard for the option calibration toolkit.

Tabs:
- Closed-form and lattice valuation side by side
- Lattice convergence chart
- Implied volatility calibration
"""

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from option_calibration.core.black_scholes import ClosedFormEngine
from option_calibration.core.lattice import LatticeEngine
from option_calibration.diagnostics.convergence import lattice_convergence
from option_calibration.solvers.calibration import calibrate
from option_calibration.utils.types import ContractSpec

st.set_page_config(page_title="Option Calibration Toolkit", layout="wide")

st.title("Option Calibration Toolkit")
st.markdown("Closed-form and Leisen-Reimer lattice pricing with Brent calibration")

st.sidebar.header("Contract")
S = st.sidebar.number_input("Spot Price (S)", value=100.0, min_value=0.01)
K = st.sidebar.number_input("Strike Price (K)", value=100.0, min_value=0.01)
T = st.sidebar.slider("Time to Expiry (years)", 0.01, 5.0, 0.5)
r = st.sidebar.slider("Risk-Free Rate (%)", 0.0, 20.0, 7.0) / 100
q = st.sidebar.slider("Dividend Yield (%)", 0.0, 10.0, 0.0) / 100
sigma = st.sidebar.slider("Volatility (%)", 1.0, 200.0, 30.0) / 100
option_type = st.sidebar.selectbox("Option Type", ["call", "put"])
style = st.sidebar.selectbox("Exercise Style", ["european", "american"])

st.sidebar.header("Lattice")
scheme = st.sidebar.selectbox("Scheme", ["leisen-reimer", "crr"])
steps = int(st.sidebar.number_input("Steps", value=123, min_value=1, step=2))

spec = ContractSpec(S, K, T, sigma, r, q, option_type, style)

tab1, tab2, tab3 = st.tabs(["Pricing & Greeks", "Lattice Convergence", "Implied Volatility"])

with tab1:
    st.header("Option Valuation")

    try:
        lattice = LatticeEngine(spec, steps=steps, scheme=scheme).price()
    except ValueError as e:
        st.error(f"Error: {e}")
        lattice = None
    closed_form = ClosedFormEngine(spec).price()

    col1, col2 = st.columns(2)
    with col1:
        st.metric(label="Closed form (European)", value=f"${closed_form.price:.4f}")
    with col2:
        if lattice is not None:
            st.metric(
                label=f"Lattice ({style})",
                value=f"${lattice.price:.4f}",
                delta=f"{lattice.price - closed_form.price:+.4f}",
            )

    st.subheader("Greeks")
    rows = ["Delta", "Gamma", "Vega", "Theta", "Rho"]
    fields = ["delta", "gamma", "vega", "theta", "rho"]

    def _cell(result, field):
        value = getattr(result, field) if result is not None else None
        return "" if value is None else f"{value:.6f}"

    greeks_df = pd.DataFrame({
        "Greek": rows,
        "Closed form": [_cell(closed_form, f) for f in fields],
        "Lattice": [_cell(lattice, f) for f in fields],
    })
    st.table(greeks_df)

with tab2:
    st.header("Lattice Convergence")

    study_steps = [5, 11, 25, 51, 101, 201, 425, 853]
    if scheme == "crr":
        # Even counts show the CRR odd/even oscillation.
        study_steps = sorted(set(study_steps) | {n + 1 for n in study_steps})
    table = lattice_convergence(spec, study_steps, scheme)

    fig = go.Figure()
    fig.add_trace(go.Scatter(x=table["steps"], y=table["lattice_price"], mode="lines+markers", name="Lattice"))
    fig.add_trace(
        go.Scatter(
            x=table["steps"],
            y=table["closed_form_price"],
            name="Closed form",
            line=dict(color="orange", dash="dash"),
        )
    )
    fig.update_layout(title="Lattice price vs steps", xaxis_title="Steps", xaxis_type="log", yaxis_title="Price")
    st.plotly_chart(fig, use_container_width=True)
    st.dataframe(table)

with tab3:
    st.header("Implied Volatility Calibration")

    engine_name = st.radio("Engine", ["closed-form", "lattice"], horizontal=True)
    market_price = st.number_input("Market Price", value=float(closed_form.price), min_value=0.0001)
    col1, col2 = st.columns(2)
    with col1:
        a0 = st.number_input("Lower estimate a0", value=0.05, min_value=0.0001)
    with col2:
        b0 = st.number_input("Upper estimate b0", value=1.0, min_value=0.0001)
    search = st.checkbox("Search for a bracket if the estimates do not straddle the price")

    if st.button("Calibrate"):
        if engine_name == "lattice":
            engine = LatticeEngine(spec, steps=steps, scheme=scheme)
        else:
            engine = ClosedFormEngine(spec)
        try:
            result = calibrate(
                "volatility", engine, market_price, a0, b0, search_bracket=search, check_bounds=True
            )
            if result.converged:
                st.success(f"Implied Volatility: {result.value:.6f} ({result.value * 100:.2f}%)")
            else:
                st.warning(f"Best estimate {result.value:.6f}: {result.message}")
            st.info(f"Engine: {result.engine} | Iterations: {result.iterations}")
        except ValueError as e:
            st.error(f"Error: {e}")
