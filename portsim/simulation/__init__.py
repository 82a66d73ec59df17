from portsim.simulation.bootstrap import circular_bootstrap, monthly_return_to_annual
from portsim.simulation.withdrawal import (
    constant_withdrawal_balance, dynamic_withdrawal_balance,
    safe_withdrawal_rate, perpetual_withdrawal_rate, dynamic_withdrawal_rate
)
