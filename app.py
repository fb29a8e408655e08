import streamlit as st
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from shift_rule import (
    DEFAULT_PRECISION,
    PRECISION_MAX,
    PRECISION_MIN,
    PRECISION_STEP,
    DomainError,
    NumericalError,
    apply_shift_rule,
    solve,
)
from shift_rule_scanner import (
    DEFAULT_FREQUENCIES,
    DEFAULT_ORDER,
    DEFAULT_SUPPORT,
    ORDER_RANGE,
    classify_sweep,
    format_report,
    order_in_range,
    order_of_magnitude,
    parse_rationals,
)

# ==========================================
# PART 1: HELPERS
# ==========================================

def _test_signal(frequencies, seed):
    """Random real trigonometric polynomial over the chosen frequencies, with its derivatives."""
    rng = np.random.default_rng(seed)
    a0 = rng.uniform(-1, 1)
    amps = rng.uniform(-1, 1, size=(len(frequencies), 2))
    omegas = [2 * np.pi * float(xi) for xi in frequencies]

    def f(t):
        t = np.asarray(t, dtype=float)
        out = np.full_like(t, a0)
        for (a, b), w in zip(amps, omegas):
            out = out + a * np.cos(w * t) + b * np.sin(w * t)
        return out

    def df(t, order):
        # d^k/dt^k cos(wt) = w^k cos(wt + k pi/2)
        t = np.asarray(t, dtype=float)
        out = np.zeros_like(t)
        for (a, b), w in zip(amps, omegas):
            shift = order * np.pi / 2
            out = out + w**order * (a * np.cos(w * t + shift) + b * np.sin(w * t + shift))
        return out

    return f, df


# ==========================================
# PART 2: THE STREAMLIT UI
# ==========================================

st.set_page_config(page_title="Solve-for-u: Shift Rules", layout="wide", page_icon="⚡")

st.markdown("""
<style>
    .block-container {padding-top: 2rem;}
</style>
""", unsafe_allow_html=True)

st.title("⚡ Solve-for-u: Feasible Shift Rules")
st.markdown("""
**Find a feasible shift rule with a given support.**
Given a set of frequencies $\\Xi_+$ and a support $A$, solve the system of equations for the coefficients $u$
of a shift rule with support in $A$. If none exists, the shift rule closest to feasible (in L²-norm) is returned.
""")

# Shared parameters
with st.sidebar:
    st.subheader("Data")
    alpha = st.number_input("Derivative order α", value=DEFAULT_ORDER, step=1)
    freq_str = st.text_input("Frequencies Ξ₊ (comma-separated)", DEFAULT_FREQUENCIES)
    support_str = st.text_input("Support A (comma-separated)", DEFAULT_SUPPORT)

    if not order_in_range(int(alpha)):
        st.error(f"Out of range: please choose α ∈ {{{ORDER_RANGE[0]},…,{ORDER_RANGE[1]}}}.")
    else:
        st.success("Range check for α: ✅")

try:
    frequencies = parse_rationals(freq_str)
    support = parse_rationals(support_str)
except DomainError as exc:
    st.error(f"Invalid input: {exc}")
    st.stop()

tab1, tab2, tab3 = st.tabs([
    "🎛️ Solve for u",
    "📉 Precision Sweep",
    "🧪 Rule Check",
])

# -----------------------------------------------------------------------------
# TAB 1: SOLVE
# -----------------------------------------------------------------------------
with tab1:
    col_ctrl, col_viz = st.columns([1, 2])

    with col_ctrl:
        st.table(pd.DataFrame({
            "": ["α", "|Ξ₊|", "|A|"],
            "value": [int(alpha), len(frequencies), len(support)],
        }).set_index(""))

        precision = st.slider(
            "Floating point precision (bits)",
            PRECISION_MIN, PRECISION_MAX, DEFAULT_PRECISION, step=PRECISION_STEP,
        )
        st.caption("Precision of a 64-bit C-style `double` is 53 significand bits. "
                   "If a feasible rule exists, the error tends to 0 as the precision grows.")

        try:
            result = solve(frequencies, int(alpha), support, precision)
        except (DomainError, NumericalError) as exc:
            result = None
            st.error(f"{type(exc).__name__}: {exc}")

    with col_viz:
        if result is not None:
            st.code(format_report(result), language=None)

            c1, c2, c3 = st.columns(3)
            c1.metric("Error (∞-norm)", f"{float(result.error):.2e}")
            c2.metric("Cost ‖u‖₁", f"{float(result.cost):.6f}")
            c3.metric("Cost gap", f"{float(result.cost_gap):.2e}", delta_color="inverse")

            u = result.as_floats()
            offsets = [float(a) for a in result.support]

            fig, ax = plt.subplots(figsize=(8, 4))
            markerline, stemlines, baseline = ax.stem(offsets, u, basefmt="black")
            plt.setp(stemlines, 'color', 'blue')
            plt.setp(markerline, 'color', 'blue')
            ax.set_title(f"Coefficients u ({result.method}, rank {result.rank})")
            ax.set_xlabel("offset a")
            ax.grid(True, alpha=0.3)
            st.pyplot(fig)

            st.write("**Result:**")
            st.dataframe(pd.DataFrame({
                "offset a": [str(a) for a in result.support],
                "u": [str(v) for v in result.coefficients],
            }))

# -----------------------------------------------------------------------------
# TAB 2: PRECISION SWEEP
# -----------------------------------------------------------------------------
with tab2:
    st.subheader("Error vs. Precision")
    st.markdown("""
    For a feasible support the residual falls with every extra bit of precision.
    For an infeasible one it settles on the least-squares floor.
    """)

    col_acc_1, col_acc_2 = st.columns([1, 3])

    with col_acc_1:
        p_lo, p_hi = st.select_slider(
            "Precision range (bits)",
            options=list(range(PRECISION_MIN, PRECISION_MAX + 1, PRECISION_STEP)),
            value=(PRECISION_MIN, 2048),
        )
        n_points = st.slider("Points", 2, 24, 8)

    with col_acc_2:
        precisions = sorted(set(int(p) for p in np.geomspace(p_lo, p_hi, n_points)))
        solutions = []
        failed = []
        for p in precisions:
            try:
                solutions.append(solve(frequencies, int(alpha), support, p))
            except NumericalError:
                failed.append(p)
            except DomainError as exc:
                st.error(f"DomainError: {exc}")
                break

        if failed:
            st.warning(f"Singular at precision(s): {', '.join(map(str, failed))}")

        if solutions:
            sweep = pd.DataFrame({
                "precision": [s.precision for s in solutions],
                "log10 error": [order_of_magnitude(s.error) for s in solutions],
                "log10 cost gap": [order_of_magnitude(s.cost_gap) for s in solutions],
            }).apply(pd.to_numeric)

            fig2, ax_conv = plt.subplots(figsize=(8, 5))
            ax_conv.plot(sweep["precision"], sweep["log10 error"], 'o-', label="error")
            ax_conv.plot(sweep["precision"], sweep["log10 cost gap"], 's--', label="cost - opt")
            ax_conv.set_xlabel("Precision (bits)")
            ax_conv.set_ylabel("log10 of value (exact zeros omitted)")
            ax_conv.grid(True, which="both", alpha=0.3)
            ax_conv.legend()
            st.pyplot(fig2)

            verdict = classify_sweep(solutions)
            st.metric("Support verdict", verdict)
            st.dataframe(sweep)

# -----------------------------------------------------------------------------
# TAB 3: RULE CHECK
# -----------------------------------------------------------------------------
with tab3:
    st.subheader("Apply the Rule to a Signal")
    st.markdown("""
    A random real signal $f(t) = a_0 + \\sum_\\xi a_\\xi\\cos(2\\pi\\xi t) + b_\\xi\\sin(2\\pi\\xi t)$
    over $\\Xi_+$ is sampled at $x - a$ for $a \\in A$; the weighted sum $\\sum_a u_a f(x-a)$
    is compared with the exact derivative $f^{(\\alpha)}(x)$.
    """)

    seed = st.number_input("Signal seed", value=0, step=1)
    x_star = st.number_input("Evaluation point x", value=0.0, step=0.05)

    if st.button("🚀 Check Rule"):
        try:
            rule = solve(frequencies, int(alpha), support, DEFAULT_PRECISION)
        except (DomainError, NumericalError) as exc:
            st.error(f"{type(exc).__name__}: {exc}")
        else:
            f, df = _test_signal(frequencies, int(seed))
            approx = float(apply_shift_rule(rule, lambda t: float(f(float(t))), x_star))
            exact = float(df(x_star, rule.order))

            c1, c2, c3 = st.columns(3)
            c1.metric("Shift-rule estimate", f"{approx:.10f}")
            c2.metric("True derivative", f"{exact:.10f}")
            c3.metric("Error", f"{abs(approx - exact):.2e}", delta_color="inverse")

            t_plot = np.linspace(x_star - 1.0, x_star + 1.0, 400)
            samples = [x_star - float(a) for a in rule.support]
            fig3, ax3 = plt.subplots(figsize=(8, 4))
            ax3.plot(t_plot, f(t_plot), 'k-', alpha=0.5, label='f(t)')
            ax3.scatter(samples, f(samples), color='blue', s=60, zorder=5, label='samples f(x - a)')
            ax3.axvline(x_star, color='red', linestyle='--', alpha=0.5, label='x')
            ax3.legend()
            ax3.grid(True, alpha=0.3)
            st.pyplot(fig3)
