"""
Persistence boundary for performance results.

Two halves: a versioned pickle blob of a whole Performance (measurements,
summaries and the pipeline state needed to resume), and a flat row mapping
of individual measurements with a stable column list for tabular storage.
Composite fields (holdings, tax lots, justification) travel as JSON text
inside a row.
"""

import json
import logging
import pickle
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from portsim import config as cfg
from portsim.measurement import (
    MeasurementField, FIELD_ATTRIBUTES, NUMERIC_FIELDS, PerformanceMeasurement, ReportableHolding,
    get_field,
)
from portsim.metrics import Performance
from portsim.tax.lots import TaxLot

logger = logging.getLogger(__name__)

PORTFOLIO_ID_COLUMN = "portfolio_id"

MEASUREMENT_COLUMNS: List[str] = [PORTFOLIO_ID_COLUMN] + [f.value for f in MeasurementField]


# ============================================================================
# BLOB
# ============================================================================

def dumps(perf: Performance) -> bytes:
    return pickle.dumps({'version': cfg.BLOB_VERSION, 'performance': perf},
                        protocol=pickle.HIGHEST_PROTOCOL)


def loads(blob: bytes) -> Performance:
    """
    Restore a Performance written by dumps().

    Raises:
        ValueError: the blob was written by an incompatible version
    """
    payload = pickle.loads(blob)
    version = payload.get('version') if isinstance(payload, dict) else None
    if version != cfg.BLOB_VERSION:
        raise ValueError(f"unsupported performance blob version {version!r} "
                         f"(expected {cfg.BLOB_VERSION})")
    return payload['performance']


def blob_path(portfolio_id: str) -> Path:
    return cfg.CACHE_DIR / f"performance_{portfolio_id}.pkl"


def save_blob(perf: Performance, path: Optional[Union[str, Path]] = None) -> Path:
    """Write the blob to `path`, by default under CACHE_DIR keyed by portfolio id."""
    if path is None:
        cfg.init_cache()
        path = blob_path(perf.portfolio_id or "default")
    path = Path(path)
    with open(path, 'wb') as f:
        f.write(dumps(perf))
    logger.debug("saved %d measurements to %s", len(perf), path)
    return path


def load_blob(path: Union[str, Path]) -> Optional[Performance]:
    """Read a blob back; None when the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    with open(path, 'rb') as f:
        return loads(f.read())


# ============================================================================
# ROWS
# ============================================================================

def _holdings_json(holdings) -> str:
    return json.dumps([
        {'security': h.security, 'shares': h.shares,
         'percent_portfolio': h.percent_portfolio, 'value': h.value}
        for h in holdings
    ])


def _lots_json(lots) -> str:
    return json.dumps([
        {'security': lot.security, 'date': pd.Timestamp(lot.date).isoformat(),
         'shares': lot.shares, 'price_per_share': lot.price_per_share,
         'transaction_id': lot.transaction_id}
        for lot in lots
    ])


def _justification_json(justification) -> str:
    return json.dumps([[key, value] for key, value in justification])


def measurement_to_row(m: PerformanceMeasurement, portfolio_id: str = "") -> Dict[str, object]:
    """Flatten a measurement into {column: value} using MEASUREMENT_COLUMNS."""
    row: Dict[str, object] = {PORTFOLIO_ID_COLUMN: portfolio_id}
    row[MeasurementField.EVENT_DATE.value] = pd.Timestamp(m.time).isoformat()
    row[MeasurementField.HOLDINGS.value] = _holdings_json(m.holdings)
    row[MeasurementField.TAX_LOTS.value] = _lots_json(m.tax_lots)
    row[MeasurementField.JUSTIFICATION.value] = _justification_json(m.justification)
    for f in NUMERIC_FIELDS:
        row[f.value] = float(get_field(m, f))
    return row


def _loads_json(value) -> list:
    if value is None or (isinstance(value, float) and np.isnan(value)) or value == "":
        return []
    return json.loads(value)


def row_to_measurement(row: Mapping[str, object]) -> PerformanceMeasurement:
    """
    Rebuild a measurement from a row produced by measurement_to_row.

    Raises:
        KeyError: a column of MEASUREMENT_COLUMNS (other than portfolio_id)
            is missing
    """
    missing = [c for c in MEASUREMENT_COLUMNS if c != PORTFOLIO_ID_COLUMN and c not in row]
    if missing:
        raise KeyError(f"measurement row is missing columns: {missing}")

    values = {
        'time': pd.Timestamp(row[MeasurementField.EVENT_DATE.value]),
        'holdings': tuple(
            ReportableHolding(h['security'], h['shares'], h['percent_portfolio'], h['value'])
            for h in _loads_json(row[MeasurementField.HOLDINGS.value])
        ),
        'tax_lots': tuple(
            TaxLot(lot['security'], pd.Timestamp(lot['date']), lot['shares'],
                   lot['price_per_share'], lot['transaction_id'])
            for lot in _loads_json(row[MeasurementField.TAX_LOTS.value])
        ),
        'justification': tuple(
            (key, float(value))
            for key, value in _loads_json(row[MeasurementField.JUSTIFICATION.value])
        ),
    }
    for f in NUMERIC_FIELDS:
        values[FIELD_ATTRIBUTES[f]] = float(row[f.value])
    return PerformanceMeasurement(**values)


def measurements_to_frame(measurements: Iterable[PerformanceMeasurement],
                          portfolio_id: str = "") -> pd.DataFrame:
    rows = [measurement_to_row(m, portfolio_id) for m in measurements]
    return pd.DataFrame(rows, columns=MEASUREMENT_COLUMNS)


def frame_to_measurements(frame: pd.DataFrame) -> List[PerformanceMeasurement]:
    """Rows of `frame` back to measurements, ordered by event date."""
    if frame.empty:
        return []
    measurements = [row_to_measurement(row) for _, row in frame.iterrows()]
    return sorted(measurements, key=lambda m: m.time)


def performance_to_frame(perf: Performance) -> pd.DataFrame:
    return measurements_to_frame(perf.measurements, perf.portfolio_id)
