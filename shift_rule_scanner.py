# shift_rule_scanner.py
# Precision Sweep & Feasibility Report for Shift Rules
# ----------------------------------------------------

import argparse
import logging
import sys
from fractions import Fraction

import mpmath

from shift_rule import (
    DomainError,
    NumericalError,
    solve,
)

_logger = logging.getLogger(__name__)

# Formatting only; never used for solving.
_display = mpmath.MPContext()

# Example from the paper supplement: two frequencies, first derivative.
DEFAULT_FREQUENCIES = "2, 3"
DEFAULT_ORDER = 1
DEFAULT_SUPPORT = "-1/12, 1/12, 5/12"
DEFAULT_SWEEP = (64, 256, 1024, 4096)

# Orders the presentation layers treat as supported.
ORDER_RANGE = (1, 4)

# Two successive errors within this relative distance count as a plateau.
PLATEAU_RTOL = 1e-6


# --- INPUT PARSING ---

def parse_rationals(text):
    """Parse '2, 3' or '-1/12, 1/12' into a list of Fractions."""
    values = []
    for token in text.replace(";", ",").split(","):
        token = token.strip().replace(" ", "")
        if not token:
            continue
        try:
            values.append(Fraction(token))
        except (ValueError, ZeroDivisionError) as exc:
            raise DomainError(f"not a rational number: {token!r}") from exc
    return values


def order_in_range(order):
    return ORDER_RANGE[0] <= order <= ORDER_RANGE[1]


# --- REPORT FORMATTING ---

def order_of_magnitude(x):
    """floor(log10(x)) for x > 0, None for x == 0."""
    if x == 0:
        return None
    return int(_display.floor(_display.log10(abs(_display.mpf(x)))))


def format_signed_magnitude(x):
    if x == 0:
        return " 0"
    sign = "+" if x >= 0 else "-"
    return f"{sign}1e{order_of_magnitude(x)}"


def format_report(solution):
    """The two summary lines: residual magnitude and distance of the cost from the bound."""
    k = order_of_magnitude(solution.error)
    if k is None:
        first = f"error      =  0        at precision {solution.precision}"
    else:
        first = f"error      ≈  1e{k}     at precision {solution.precision}"
    second = f"cost - opt ≈ {format_signed_magnitude(solution.cost_gap)}"
    return f"{first}\n{second}"


# --- SWEEP ENGINE ---

def sweep_precision(frequencies, order, support, precisions=DEFAULT_SWEEP):
    """Solve afresh at each precision; each call gets its own context."""
    return [solve(frequencies, order, support, p) for p in precisions]


def classify_sweep(solutions):
    """FEASIBLE, INFEASIBLE or INCONCLUSIVE from a sweep with increasing precision."""
    if not solutions:
        return "INCONCLUSIVE"
    last = solutions[-1]
    if last.is_feasible():
        return "FEASIBLE"
    if len(solutions) >= 2:
        prev = solutions[-2]
        if abs(last.error - prev.error) <= PLATEAU_RTOL * last.error:
            return "INFEASIBLE"
    return "INCONCLUSIVE"


def run_input_stream(frequencies, order, support, precisions=DEFAULT_SWEEP):
    """
    Sweeps the precision for one support, then the derivative order at the
    highest precision, and prints what the residual does.
    """
    print(f"{'='*60}")
    print(f"SHIFT RULE FEASIBILITY SCANNER")
    print(f"{'='*60}")
    print(f"α = {order}   |Ξ₊| = {len(frequencies)}   |A| = {len(support)}")
    if not order_in_range(order):
        print(f"WARNING: order {order} is outside {ORDER_RANGE[0]}..{ORDER_RANGE[1]}")
    print(f"{'TEST SCENARIO':<25} | {'STATUS':<10} | {'MAX ERR':<10} | {'COST GAP':<10}")
    print("-" * 65)

    # ---------------------------------------------------------
    # STREAM 1: Precision Sweep (Feasible vs. Plateau)
    # ---------------------------------------------------------
    # A feasible support drives the error down with the precision,
    # an infeasible one settles on the least-squares floor.

    solutions = []
    for p in precisions:
        try:
            sol = solve(frequencies, order, support, p)
        except NumericalError as exc:
            _logger.info("precision %d: %s", p, exc)
            print(f"Precision {p:<15} | SINGULAR   | -          | -")
            continue
        solutions.append(sol)
        status = "EXACT" if sol.is_feasible() else "RESIDUAL"
        print(f"Precision {p:<15} | {status:<10} | {_display.nstr(sol.error, 3):<10} "
              f"| {_display.nstr(sol.cost_gap, 3):<10}")

    verdict = classify_sweep(solutions)
    print("-" * 65)
    print(f"Support verdict: {verdict}")
    print("-" * 65)

    # ---------------------------------------------------------
    # STREAM 2: Derivative Order (same support, top precision)
    # ---------------------------------------------------------

    top = precisions[-1]
    for alpha in range(ORDER_RANGE[0], ORDER_RANGE[1] + 1):
        try:
            sol = solve(frequencies, alpha, support, top)
        except NumericalError:
            print(f"Order α={alpha:<16} | SINGULAR   | -          | -")
            continue
        status = "EXACT" if sol.is_feasible() else "RESIDUAL"
        print(f"Order α={alpha:<16} | {status:<10} | {_display.nstr(sol.error, 3):<10} "
              f"| {_display.nstr(sol.cost_gap, 3):<10}")

    print(f"{'='*60}")
    if solutions:
        print(format_report(solutions[-1]))
        print("u =", ", ".join(_display.nstr(u, 12) for u in solutions[-1].coefficients))
    return verdict


def build_parser():
    p = argparse.ArgumentParser(
        description="Solve for shift-rule coefficients on a given support and sweep the precision."
    )
    p.add_argument("--freq", default=DEFAULT_FREQUENCIES,
                   help=f"Comma-separated positive frequencies Ξ₊ (default: {DEFAULT_FREQUENCIES!r}).")
    p.add_argument("--order", type=int, default=DEFAULT_ORDER,
                   help=f"Derivative order α (default: {DEFAULT_ORDER}).")
    p.add_argument("--support", default=DEFAULT_SUPPORT,
                   help=f"Comma-separated offsets A (default: {DEFAULT_SUPPORT!r}).")
    p.add_argument("--precision", type=int, nargs="+", default=list(DEFAULT_SWEEP),
                   help=f"Precisions in bits to sweep (default: {' '.join(map(str, DEFAULT_SWEEP))}).")
    p.add_argument("-v", "--verbose", action="store_true", help="Log solver details.")
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        frequencies = parse_rationals(args.freq)
        support = parse_rationals(args.support)
        run_input_stream(frequencies, args.order, support, sorted(args.precision))
    except DomainError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
