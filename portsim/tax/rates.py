from dataclasses import dataclass, replace
from typing import Callable, Mapping, Optional, Union

# Flat state income tax approximations applied on top of federal rates
STATE_TAX_INFO = {
    'CA': {'name': 'California', 'rate': 0.093},
    'NY': {'name': 'New York', 'rate': 0.065},
    'TX': {'name': 'Texas', 'rate': 0.0},
    'FL': {'name': 'Florida', 'rate': 0.0},
    'WA': {'name': 'Washington', 'rate': 0.07},
    'NV': {'name': 'Nevada', 'rate': 0.0},
    'IL': {'name': 'Illinois', 'rate': 0.0495},
    'MA': {'name': 'Massachusetts', 'rate': 0.05},
    'NJ': {'name': 'New Jersey', 'rate': 0.0637}
}


@dataclass(frozen=True)
class TaxRates:
    """Marginal rates applied to each kind of taxable portfolio income."""
    ordinary: float              # non-qualified dividends and interest
    qualified_dividend: float
    long_term: float
    short_term: float
    state: float = 0.0

    def for_state(self, code: str) -> "TaxRates":
        info = STATE_TAX_INFO.get(code.upper())
        if info is None:
            raise KeyError(f"unknown state: {code}")
        return replace(self, state=info['rate'])


# Conservative fallback: top federal bracket, no state tax
DEFAULT_TAX_RATES = TaxRates(
    ordinary=0.37,
    qualified_dividend=0.20,
    long_term=0.20,
    short_term=0.37,
)

TaxRateProvider = Union[TaxRates, Mapping[str, float], Callable[[], Optional[TaxRates]], None]


def resolve_tax_rates(provider: TaxRateProvider = None) -> TaxRates:
    """
    Turn whatever the caller supplied into a TaxRates.

    Accepts a TaxRates, a mapping with the TaxRates field names, a callable
    returning either, or None. Anything unusable falls back to
    DEFAULT_TAX_RATES.
    """
    if callable(provider) and not isinstance(provider, TaxRates):
        provider = provider()
    if provider is None:
        return DEFAULT_TAX_RATES
    if isinstance(provider, TaxRates):
        return provider
    return TaxRates(
        ordinary=float(provider.get('ordinary', DEFAULT_TAX_RATES.ordinary)),
        qualified_dividend=float(provider.get('qualified_dividend', DEFAULT_TAX_RATES.qualified_dividend)),
        long_term=float(provider.get('long_term', DEFAULT_TAX_RATES.long_term)),
        short_term=float(provider.get('short_term', DEFAULT_TAX_RATES.short_term)),
        state=float(provider.get('state', DEFAULT_TAX_RATES.state)),
    )
