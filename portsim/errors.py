"""Exceptions raised by the simulation and analytics engine."""


class PortsimError(Exception):
    """Base class for every error raised by portsim."""


class InvalidTransactionTypeError(PortsimError):
    """Transaction kind is not one the processor understands."""

    def __init__(self, kind):
        super().__init__(f"invalid transaction type: {kind!r}")
        self.kind = kind


class RebalanceTargetError(PortsimError):
    """Target allocation weights do not sum to 1.0."""

    def __init__(self, total: float, message: str = None):
        super().__init__(message or f"target portfolio allocation total must equal 1.0 (got {total!r})")
        self.total = total


class InvalidSellError(PortsimError):
    """A sell was requested for a non-positive amount."""

    def __init__(self, security: str, amount: float, reason: str = "sell amount must be positive"):
        super().__init__(f"{reason}: {security} ({amount!r})")
        self.security = security
        self.amount = amount


class TaxLotSyncError(PortsimError):
    """Tax lots and holdings disagree beyond tolerance."""


class DataUnavailableError(PortsimError):
    """Market data needed for a trading day could not be obtained."""

    def __init__(self, what: str, date=None):
        msg = f"data unavailable: {what}"
        if date is not None:
            msg += f" on {date}"
        super().__init__(msg)
        self.what = what
        self.date = date


class DidNotConvergeError(PortsimError):
    """Root finder exhausted its iterations or had no bracketed root."""

    def __init__(self, message: str = "did not converge", last_guess: float = float("nan")):
        super().__init__(message)
        self.last_guess = last_guess


class SimulationError(PortsimError):
    """A performance run failed; carries the last fully processed date."""

    def __init__(self, message: str, last_completed=None):
        if last_completed is not None:
            message = f"{message} (last completed measurement: {last_completed})"
        super().__init__(message)
        self.last_completed = last_completed


class SimulationCancelled(SimulationError):
    """A performance run observed its cancellation token."""

    def __init__(self, last_completed=None):
        super().__init__("performance calculation cancelled", last_completed)
