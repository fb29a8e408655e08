# shift_rule.py
# Shift-Rule Coefficients on a Given Support
# ------------------------------------------

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction

import mpmath

_logger = logging.getLogger(__name__)

# ==========================================
# PRECISION
# ==========================================

DEFAULT_PRECISION = 1024      # bits
PRECISION_MIN = 64
PRECISION_MAX = 16384
PRECISION_STEP = 64

# Extra bits of slack on top of machine epsilon when deciding that a pivot
# or a singular value is zero.
GUARD_BITS = 8

# Bits of the working precision a residual may lose and still count as zero.
FEASIBILITY_GUARD_BITS = 32


class DomainError(ValueError):
    """Invalid input shape or range."""


class NumericalError(ArithmeticError):
    """The system could not be solved at the working precision."""


def make_context(precision):
    """Fresh mpmath context working at `precision` bits."""
    if isinstance(precision, bool) or not isinstance(precision, int):
        raise DomainError(f"precision must be an integer number of bits, got {precision!r}")
    if precision < 1:
        raise DomainError(f"precision must be positive, got {precision}")
    ctx = mpmath.MPContext()
    ctx.prec = precision
    return ctx


def _rank_tolerance(ctx, scale, dim):
    return dim * scale * ctx.ldexp(ctx.eps, GUARD_BITS)


# ==========================================
# INPUTS
# ==========================================

def _to_fraction(value, name):
    if isinstance(value, bool):
        raise DomainError(f"{name} must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise DomainError(f"{name} must be finite, got {value!r}")
    if isinstance(value, Decimal) and not value.is_finite():
        raise DomainError(f"{name} must be finite, got {value!r}")
    if hasattr(value, "_mpf_"):
        # mpf from any context: exact binary value
        if not mpmath.isfinite(value):
            raise DomainError(f"{name} must be finite, got {value!r}")
        return Fraction(*mpmath.libmp.to_rational(value._mpf_))
    if isinstance(value, str):
        value = value.strip()
    try:
        return Fraction(value)
    except (TypeError, ValueError, ZeroDivisionError) as exc:
        raise DomainError(f"{name} is not a rational or real number: {value!r}") from exc


def _check_inputs(frequencies, order, support):
    freqs = tuple(_to_fraction(xi, "frequency") for xi in frequencies)
    if not freqs:
        raise DomainError("frequency set must not be empty")
    for xi in freqs:
        if xi <= 0:
            raise DomainError(f"frequencies must be positive, got {xi}")

    if isinstance(order, bool) or not isinstance(order, int):
        raise DomainError(f"derivative order must be an integer, got {order!r}")
    if order < 1:
        raise DomainError(f"derivative order must be at least 1, got {order}")

    offsets = tuple(_to_fraction(a, "offset") for a in support)
    if not offsets:
        raise DomainError("support must not be empty")
    return freqs, order, offsets


def _mpf(ctx, q):
    # one rounding: numerator / denominator at the working precision
    return ctx.mpf(q.numerator) / q.denominator


# ==========================================
# SYSTEM BUILDER
# ==========================================

# i^order for order mod 4, as (real part, imaginary part)
_I_POWERS = ((1, 0), (0, 1), (-1, 0), (0, -1))


@dataclass(frozen=True)
class LinearSystem:
    """Real system E u = rhs: one zero-frequency row, then L cosine rows, then L sine rows."""
    matrix: tuple
    rhs: tuple
    precision: int

    @property
    def shape(self):
        return (len(self.matrix), len(self.matrix[0]) if self.matrix else 0)


def build_system(frequencies, order, support, ctx):
    """Assemble (E, rhs) for the given frequencies, derivative order and support."""
    freqs, order, offsets = _check_inputs(frequencies, order, support)
    rows = [[ctx.mpf(1) for _ in offsets]]
    rhs = [ctx.mpf(0)]

    re_unit, im_unit = _I_POWERS[order % 4]
    cos_rows, sin_rows = [], []
    cos_rhs, sin_rhs = [], []
    for xi in freqs:
        # cos(2 pi xi a) = cospi(2 xi a); 2 xi a is exact before rounding
        args = [_mpf(ctx, 2 * xi * a) for a in offsets]
        cos_rows.append([ctx.cospi(t) for t in args])
        sin_rows.append([-ctx.sinpi(t) for t in args])

        power = (2 * ctx.pi * _mpf(ctx, xi)) ** order
        cos_rhs.append(re_unit * power)
        sin_rhs.append(im_unit * power)

    rows.extend(cos_rows)
    rows.extend(sin_rows)
    rhs.extend(cos_rhs)
    rhs.extend(sin_rhs)

    return LinearSystem(
        matrix=tuple(tuple(row) for row in rows),
        rhs=tuple(rhs),
        precision=ctx.prec,
    )


# ==========================================
# SOLVER
# ==========================================

def _gauss_solve(A, b, ctx):
    """Solve Ax = b with partial pivoting; A must be square."""
    n = len(A)
    M = [list(row) for row in A]
    y = list(b)
    scale = max(ctx.fabs(v) for row in M for v in row)
    tol = _rank_tolerance(ctx, scale, n)
    for k in range(n):
        piv = max(range(k, n), key=lambda i: ctx.fabs(M[i][k]))
        if ctx.fabs(M[piv][k]) <= tol:
            raise NumericalError(
                f"square system is singular at {ctx.prec} bits (pivot {k} vanishes)"
            )
        if piv != k:
            M[k], M[piv] = M[piv], M[k]
            y[k], y[piv] = y[piv], y[k]
        for i in range(k + 1, n):
            m = M[i][k] / M[k][k]
            if m != 0:
                for j in range(k, n):
                    M[i][j] -= m * M[k][j]
                y[i] -= m * y[k]
    x = [ctx.mpf(0)] * n
    for i in range(n - 1, -1, -1):
        s = y[i] - ctx.fsum(M[i][j] * x[j] for j in range(i + 1, n))
        x[i] = s / M[i][i]
    return x


def _lstsq_min_norm(A, b, ctx):
    """Minimum-norm least-squares solution of Ax = b through the SVD.

    Returns (x, rank). Singular values below the rank tolerance are dropped,
    which picks the shortest minimiser when A is wide or rank deficient.
    """
    m, n = len(A), len(A[0])
    wide = m < n
    # decompose the tall orientation; A^T = U S V gives A = V^T S U^T
    M = ctx.matrix([list(row) for row in A])
    try:
        U, S, V = ctx.svd_r(M.T if wide else M, full_matrices=False)
    except (RuntimeError, ZeroDivisionError) as exc:
        raise NumericalError(f"SVD did not converge at {ctx.prec} bits") from exc
    if wide:
        U, V = V.T, U.T

    sigma = [S[k] for k in range(min(U.cols, V.rows))]
    s_max = max(ctx.fabs(s) for s in sigma)
    if s_max == 0:
        return [ctx.mpf(0)] * n, 0
    tol = _rank_tolerance(ctx, s_max, max(m, n))

    x = [ctx.mpf(0)] * n
    rank = 0
    for k, s in enumerate(sigma):
        if ctx.fabs(s) <= tol:
            continue
        rank += 1
        c = ctx.fsum(U[i, k] * b[i] for i in range(m)) / s
        for j in range(n):
            x[j] += c * V[k, j]
    return x, rank


def residual_norm(system, coefficients, ctx):
    """max_i |rhs[i] - (E u)[i]|"""
    worst = ctx.mpf(0)
    for row, target in zip(system.matrix, system.rhs):
        r = ctx.fabs(target - ctx.fsum(e * u for e, u in zip(row, coefficients)))
        if r > worst:
            worst = r
    return worst


def cost(coefficients, ctx):
    """L1 norm of the coefficient vector (the query cost of the rule)."""
    return ctx.fsum(ctx.fabs(u) for u in coefficients)


def cost_bound(frequencies, order, ctx):
    """(2 pi max(frequencies))^order, the lower bound on the cost of any feasible rule."""
    xi_max = max(_to_fraction(xi, "frequency") for xi in frequencies)
    return (2 * ctx.pi * _mpf(ctx, xi_max)) ** order


def cost_gap(coefficients, frequencies, order, ctx):
    return ctx.fabs(cost(coefficients, ctx) - cost_bound(frequencies, order, ctx))


@dataclass(frozen=True)
class Solution:
    """Coefficients of a shift rule on a given support, plus fit diagnostics.

    `error` is the infinity norm of the residual. Zero up to rounding means
    the support is feasible; a floor that survives higher precision means it
    is not, and `coefficients` is then the least-squares best fit.
    """
    frequencies: tuple
    order: int
    support: tuple
    precision: int
    coefficients: tuple
    error: object
    cost: object
    cost_gap: object
    method: str
    rank: int

    def as_floats(self):
        return [float(u) for u in self.coefficients]

    def is_feasible(self, guard_bits=FEASIBILITY_GUARD_BITS):
        guard = min(guard_bits, self.precision // 2)
        ctx = make_context(self.precision)
        tol = ctx.ldexp(max(ctx.mpf(1), self.cost), guard - self.precision)
        return self.error <= tol


def solve(frequencies, order, support, precision=DEFAULT_PRECISION):
    """Solve for the shift-rule coefficients u on `support` at `precision` bits."""
    freqs, order, offsets = _check_inputs(frequencies, order, support)
    ctx = make_context(precision)
    system = build_system(freqs, order, offsets, ctx)
    rows, cols = system.shape

    if rows == cols:
        u = _gauss_solve(system.matrix, system.rhs, ctx)
        method, rank = "exact", cols
    else:
        u, rank = _lstsq_min_norm(system.matrix, system.rhs, ctx)
        method = "least-squares"

    error = residual_norm(system, u, ctx)
    total = cost(u, ctx)
    gap = ctx.fabs(total - cost_bound(freqs, order, ctx))
    _logger.debug(
        "solve: %dx%d system at %d bits via %s (rank %d), error %s",
        rows, cols, precision, method, rank, ctx.nstr(error, 5),
    )
    return Solution(
        frequencies=freqs,
        order=order,
        support=offsets,
        precision=precision,
        coefficients=tuple(u),
        error=error,
        cost=total,
        cost_gap=gap,
        method=method,
        rank=rank,
    )


# ==========================================
# APPLYING A RULE
# ==========================================

def apply_shift_rule(solution, signal, x=0):
    """Estimate the order-th derivative of `signal` at x as sum_s u_s * signal(x - a_s)."""
    ctx = make_context(solution.precision)
    x = _mpf(ctx, _to_fraction(x, "x"))
    return ctx.fsum(
        u * signal(x - _mpf(ctx, a))
        for u, a in zip(solution.coefficients, solution.support)
    )
