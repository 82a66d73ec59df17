import math
from typing import Callable

from portsim import config as cfg
from portsim.errors import DidNotConvergeError

_BISECT = 1
_FALSE_POSITION = 2


def fsolve(
    f: Callable[[float], float],
    x0: float,
    lo: float = 0.0,
    hi: float = 1.0,
    tol: float = cfg.FSOLVE_TOLERANCE,
    max_iterations: int = cfg.FSOLVE_MAX_ITERATIONS,
) -> float:
    """
    Find a root of f inside [lo, hi] with a bisection / false-position hybrid.

    False-position steps use the Anderson-Bjorck modification so a stagnant
    endpoint gets its weight scaled down instead of pinning the bracket. Every
    few false-position steps the bracket width is compared with the width at
    the last checkpoint; if it did not shrink by at least FSOLVE_BISECT_WIDTH
    a plain bisection step is forced. The bracket is always kept, so the
    method cannot wander off like Newton's method.

    Args:
        f: Objective function
        x0: Initial guess, reported back on failure
        lo, hi: Bracketing interval; f(lo) and f(hi) must differ in sign
        tol: Stop once the bracket is narrower than this
        max_iterations: Iteration cap

    Returns:
        The bracket end with the smaller |f| once the bracket is below tol

    Raises:
        DidNotConvergeError: the interval does not bracket a root, or the
            iteration cap was reached
    """
    x1, x2 = float(lo), float(hi)
    f1, f2 = f(x1), f(x2)

    if f1 == 0:
        return x1
    if f2 == 0:
        return x2
    if math.isnan(f1) or math.isnan(f2) or f1 * f2 > 0:
        raise DidNotConvergeError(
            f"no sign change on [{x1}, {x2}]: f={f1:.6g}, {f2:.6g}", last_guess=x0
        )

    state = _FALSE_POSITION
    gamma = 1.0
    w = abs(x2 - x1)
    last_bisect_width = w
    n_false_position = 0

    for _ in range(max_iterations):
        if state == _BISECT:
            x3 = 0.5 * (x1 + x2)
            if x3 == x1 or x3 == x2:
                # x1 and x2 are adjacent floats
                return x3

            f3 = f(x3)
            if f3 == 0:
                return x3

            if f3 * f2 < 0:
                x1, f1 = x2, f2
            x2, f2 = x3, f3
            w = abs(x2 - x1)
            last_bisect_width = w
            gamma = 1.0
            n_false_position = 0
            state = _FALSE_POSITION
        else:
            s12 = (f2 - gamma * f1) / (x2 - x1)
            x3 = x2 - f2 / s12
            f3 = f(x3)
            if f3 == 0:
                return x3

            n_false_position += 1
            if f3 * f2 < 0:
                gamma = 1.0
                x1, f1 = x2, f2
            else:
                # Anderson-Bjorck
                g = 1.0 - f3 / f2
                if g <= 0:
                    g = 0.5
                gamma *= g
            x2, f2 = x3, f3
            w = abs(x2 - x1)

            if n_false_position > cfg.FSOLVE_BISECT_AFTER:
                if w * cfg.FSOLVE_BISECT_WIDTH > last_bisect_width:
                    state = _BISECT
                n_false_position = 0
                last_bisect_width = w

        if w <= tol:
            return x1 if abs(f1) < abs(f2) else x2

    raise DidNotConvergeError(f"no root within {max_iterations} iterations", last_guess=x0)
