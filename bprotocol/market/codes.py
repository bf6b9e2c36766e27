"""Numeric result codes returned by the reference market.

Values match Compound's error reporters so codes surfaced through the
wrappers read the same as on the real protocol.
"""
from __future__ import annotations

from enum import IntEnum


class MarketError(IntEnum):
    NO_ERROR = 0
    UNAUTHORIZED = 1
    BAD_INPUT = 2
    COMPTROLLER_REJECTION = 3
    COMPTROLLER_CALCULATION_ERROR = 4
    INTEREST_RATE_MODEL_ERROR = 5
    INVALID_ACCOUNT_PAIR = 6
    INVALID_CLOSE_AMOUNT_REQUESTED = 7
    INVALID_COLLATERAL_FACTOR = 8
    MATH_ERROR = 9
    MARKET_NOT_FRESH = 10
    MARKET_NOT_LISTED = 11
    TOKEN_INSUFFICIENT_ALLOWANCE = 12
    TOKEN_INSUFFICIENT_BALANCE = 13
    TOKEN_INSUFFICIENT_CASH = 14
    TOKEN_TRANSFER_IN_FAILED = 15
    TOKEN_TRANSFER_OUT_FAILED = 16


class ComptrollerError(IntEnum):
    NO_ERROR = 0
    UNAUTHORIZED = 1
    INSUFFICIENT_LIQUIDITY = 4
    INVALID_COLLATERAL_FACTOR = 6
    MARKET_NOT_ENTERED = 8
    MARKET_NOT_LISTED = 9
    MARKET_ALREADY_LISTED = 10
    PRICE_ERROR = 13
