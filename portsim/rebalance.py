import logging
import math
from typing import Dict, List, Mapping, Tuple, Union, Iterable

import pandas as pd

from portsim import config as cfg
from portsim.errors import RebalanceTargetError, InvalidSellError
from portsim.transaction import Transaction, TransactionKind, SOURCE_NAME

logger = logging.getLogger(__name__)

Justification = Union[Mapping[str, float], Iterable[Tuple[str, float]]]


def _price(prices: Mapping[str, float], security: str) -> float:
    price = prices.get(security)
    if price is None:
        return math.nan
    price = float(price)
    if price <= 0:
        return math.nan
    return price


def _normalize_justification(justification: Justification) -> Tuple[Tuple[str, float], ...]:
    if isinstance(justification, Mapping):
        return tuple(justification.items())
    return tuple(tuple(item) for item in justification)


def validate_target(target: Mapping[str, float]) -> float:
    """Check weights are non-negative and sum to 1.0; returns the sum."""
    for security, weight in target.items():
        if weight < 0 or math.isnan(weight):
            raise RebalanceTargetError(
                sum(target.values()),
                f"target weight for {security} must be non-negative (got {weight!r})",
            )
    total = sum(target.values())
    if abs(1.0 - total) > cfg.TARGET_SUM_TOLERANCE:
        raise RebalanceTargetError(total)
    return total


def rebalance_to(
    holdings: Mapping[str, float],
    prices: Mapping[str, float],
    target: Mapping[str, float],
    date,
    justification: Justification = (),
) -> Tuple[Dict[str, float], List[Transaction]]:
    """
    Compute the trades that move holdings to the target allocation.

    Three passes over the portfolio: securities no longer targeted are sold
    in full, targeted securities already held are trimmed or topped up to
    their target dollars, and new securities are bought outright. Sells are
    listed before buys so the cash they raise funds the purchases.

    Prices that are missing, NaN or non-positive are unknown. A position
    that must be liquidated at an unknown price is written off at zero;
    partial trades and new purchases at an unknown price are skipped and
    the position is left as it is. Each case logs a warning.

    A position exactly at its target is left alone. A sell of SHARE_EPSILON
    dollars or less means the holdings are out of sync and is refused; a
    buy of SHARE_EPSILON shares or less is skipped with a warning.

    Nothing is mutated: the caller receives the new holdings and the
    transactions, or an exception and no changes.

    Args:
        holdings: Current security -> shares, cash under CASH_SECURITY
        prices: Security -> price on `date`
        target: Security -> weight, must sum to 1.0 within TARGET_SUM_TOLERANCE
        date: Trade date
        justification: Key/value pairs recorded on every transaction

    Returns:
        (new_holdings, transactions)

    Raises:
        RebalanceTargetError: weights negative or not summing to 1.0
        InvalidSellError: a held position is at or below SHARE_EPSILON
            shares, a computed sell is SHARE_EPSILON dollars or less, or it
            exceeds the shares held
    """
    validate_target(target)
    date = pd.Timestamp(date)
    justification = _normalize_justification(justification)

    held = {k: v for k, v in holdings.items() if k != cfg.CASH_SECURITY}
    for security, shares in held.items():
        if shares <= cfg.SHARE_EPSILON:
            logger.warning("holdings are out of sync: %s has %.8f shares on %s", security, shares, date)
            raise InvalidSellError(security, shares, "holdings are out of sync, cannot rebalance")

    cash = holdings.get(cfg.CASH_SECURITY, 0.0)
    security_value = 0.0
    for security, shares in held.items():
        price = _price(prices, security)
        if not math.isnan(price):
            security_value += shares * price
    investable = cash + security_value

    def _trade(kind, security, shares, price, value):
        return Transaction(
            date=date,
            security=security,
            kind=kind,
            shares=shares,
            price_per_share=price,
            total_value=value,
            justification=justification,
            source=SOURCE_NAME,
        )

    sells: List[Transaction] = []
    buys: List[Transaction] = []
    new_holdings: Dict[str, float] = {}

    # 1. liquidate anything no longer targeted
    for security in sorted(held):
        if security in target:
            continue
        shares = held[security]
        price = _price(prices, security)
        if math.isnan(price):
            logger.warning("%s price is not known on %s - writing off %.5f shares", security, date, shares)
            price = 0.0
        sells.append(_trade(TransactionKind.SELL, security, shares, price, shares * price))
        cash += shares * price

    # 2. + 3. adjust existing positions, open new ones
    for security in sorted(target):
        target_dollars = investable * target[security]
        price = _price(prices, security)

        if security in held:
            shares = held[security]
            if math.isnan(price):
                logger.warning("no known price for %s on %s; position left unchanged", security, date)
                new_holdings[security] = shares
                continue

            current_dollars = shares * price
            diff = target_dollars - current_dollars
            if diff == 0.0:
                new_holdings[security] = shares
            elif diff < 0:
                to_sell_dollars = -diff
                to_sell_shares = to_sell_dollars / price
                if to_sell_dollars <= cfg.SHARE_EPSILON:
                    logger.warning("holdings are out of sync - refusing to sell %.8f shares of %s on %s",
                                   to_sell_shares, security, date)
                    raise InvalidSellError(security, to_sell_dollars,
                                           "holdings are out of sync, cannot rebalance")
                if to_sell_shares > shares + cfg.SHARE_EPSILON:
                    raise InvalidSellError(security, to_sell_shares)
                sells.append(_trade(TransactionKind.SELL, security, to_sell_shares, price, to_sell_dollars))
                cash += to_sell_dollars
                remaining = shares - to_sell_shares
                if remaining > cfg.SHARE_EPSILON:
                    new_holdings[security] = remaining
            else:
                to_buy_shares = diff / price
                if to_buy_shares <= cfg.SHARE_EPSILON:
                    logger.warning("refusing to buy %.8f shares of %s on %s", to_buy_shares, security, date)
                    new_holdings[security] = shares
                    continue
                buys.append(_trade(TransactionKind.BUY, security, to_buy_shares, price, diff))
                cash -= diff
                new_holdings[security] = shares + to_buy_shares
        else:
            if math.isnan(price):
                logger.warning("refusing to buy %s on %s: price unknown", security, date)
                continue
            shares = target_dollars / price
            if shares <= cfg.SHARE_EPSILON:
                logger.warning("refusing to buy %.8f shares of %s on %s", shares, security, date)
                continue
            buys.append(_trade(TransactionKind.BUY, security, shares, price, target_dollars))
            cash -= target_dollars
            new_holdings[security] = shares

    if cash > cfg.SHARE_EPSILON:
        new_holdings[cfg.CASH_SECURITY] = cash

    return new_holdings, sells + buys
