from portsim.tax.engine import (
    CapitalLossUsageStrategy, TaxpayerElections, CapitalGainsResult,
    compute_capital_gains, TaxAssessment, TaxEngine, tax_cost_ratio,
    GoldenTestCase, GOLDEN_TESTS, run_golden_tests
)
from portsim.tax.lots import (
    LotSelectionMethod, TaxLot, TaxLotLedger, is_long_term, link_sell_with_lots
)
from portsim.tax.rates import (
    STATE_TAX_INFO, TaxRates, DEFAULT_TAX_RATES, resolve_tax_rates
)
