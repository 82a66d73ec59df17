import pytest

from portsim.errors import DidNotConvergeError
from portsim.fsolve import fsolve


def test_linear_root():
    assert fsolve(lambda x: x - 0.5, 0.1) == pytest.approx(0.5, abs=1e-4)


def test_cube_root_on_wider_bracket():
    root = fsolve(lambda x: x ** 3 - 2.0, 1.5, lo=1.0, hi=2.0)
    assert root == pytest.approx(2.0 ** (1.0 / 3.0), abs=1e-4)


def test_root_at_bracket_end_is_returned_exactly():
    assert fsolve(lambda x: x, 0.5) == 0.0
    assert fsolve(lambda x: x - 1.0, 0.5) == 1.0


def test_steep_function_still_converges():
    # one endpoint orders of magnitude larger than the other
    root = fsolve(lambda x: 1e9 * (0.3 - x) if x < 0.3 else 0.3 - x, 0.5)
    assert root == pytest.approx(0.3, abs=1e-4)


def test_no_sign_change_raises():
    with pytest.raises(DidNotConvergeError) as info:
        fsolve(lambda x: x + 1.0, 0.25)
    assert info.value.last_guess == 0.25


def test_iteration_cap_raises():
    with pytest.raises(DidNotConvergeError):
        fsolve(lambda x: x ** 3 - 0.5, 0.1, tol=0.0, max_iterations=3)
