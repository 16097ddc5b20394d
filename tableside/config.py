"""
Configuration — tax rate, reservation fee and operational knobs.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import timedelta, timezone, tzinfo
from decimal import Decimal

from tableside._types import Minor


TAX_RATE = Decimal("0.12")
RESERVATION_FEE: Minor = 10_000  # PHP 100.00
MAX_PARTY_SIZE = 20


# ═══════════════════════════════════════════════════════════════════════════════
# Config — Full Configuration
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Config:
    """
    Restaurant configuration.

    Fluent builder pattern — chain methods to configure.

    Example:
        config = (
            Config()
            .with_tax_rate("0.12")
            .with_reservation_fee(10_000)
            .with_gateway_timeout(seconds=5)
        )

    Note: Immutable — each method returns new Config.
    """

    tax_rate: Decimal = TAX_RATE
    reservation_fee: Minor = RESERVATION_FEE
    currency: str = "PHP"
    gateway_timeout: timedelta = timedelta(seconds=10)
    update_attempts: int = 5
    pickup_code_prefix: str = "RW"
    pickup_code_length: int = 4
    pickup_code_attempts: int = 5
    max_party_size: int = MAX_PARTY_SIZE
    tz: tzinfo = timezone(timedelta(hours=8), "PHT")
    sweep_concurrency: int = 8
    database_url: str = "sqlite+aiosqlite:///:memory:"
    webhook_secret: str | None = None

    def with_tax_rate(self, rate: Decimal | str | float) -> Config:
        """
        Set the tax rate.

        Floats go through str() so 0.12 stays 0.12.
        """
        value = rate if isinstance(rate, Decimal) else Decimal(str(rate))
        if value < 0:
            raise ValueError("tax rate must not be negative")
        return replace(self, tax_rate=value)

    def with_reservation_fee(self, fee: Minor) -> Config:
        """Set the fixed booking fee in minor units."""
        if fee < 0:
            raise ValueError("reservation fee must not be negative")
        return replace(self, reservation_fee=fee)

    def with_currency(self, currency: str) -> Config:
        return replace(self, currency=currency.upper())

    def with_gateway_timeout(
        self,
        *,
        seconds: float | None = None,
        delta: timedelta | None = None,
    ) -> Config:
        """
        Set the bound on a single payment gateway call.

        Example:
            .with_gateway_timeout(seconds=5)
        """
        timeout = delta if delta else timedelta(seconds=seconds or 10)
        return replace(self, gateway_timeout=timeout)

    def with_update_attempts(self, attempts: int) -> Config:
        """How many compare-and-set races an update may lose before giving up."""
        if attempts < 1:
            raise ValueError("at least one attempt is required")
        return replace(self, update_attempts=attempts)

    def with_pickup_codes(self, *, prefix: str | None = None, length: int | None = None) -> Config:
        return replace(
            self,
            pickup_code_prefix=self.pickup_code_prefix if prefix is None else prefix,
            pickup_code_length=self.pickup_code_length if length is None else length,
        )

    def with_timezone(self, tz: tzinfo) -> Config:
        return replace(self, tz=tz)

    def with_database_url(self, url: str) -> Config:
        return replace(self, database_url=url)

    def with_webhook_secret(self, secret: str | None) -> Config:
        """Shared secret the gateway signs callbacks with. None disables the check."""
        return replace(self, webhook_secret=secret)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Config:
        """
        Build from TABLESIDE_* environment variables.

        TABLESIDE_TAX_RATE, TABLESIDE_RESERVATION_FEE, TABLESIDE_CURRENCY,
        TABLESIDE_GATEWAY_TIMEOUT (seconds), TABLESIDE_DATABASE_URL,
        TABLESIDE_UTC_OFFSET_HOURS, TABLESIDE_WEBHOOK_SECRET.
        """
        env = os.environ if environ is None else environ
        config = cls()

        if rate := env.get("TABLESIDE_TAX_RATE"):
            config = config.with_tax_rate(rate)
        if fee := env.get("TABLESIDE_RESERVATION_FEE"):
            config = config.with_reservation_fee(int(fee))
        if currency := env.get("TABLESIDE_CURRENCY"):
            config = config.with_currency(currency)
        if timeout := env.get("TABLESIDE_GATEWAY_TIMEOUT"):
            config = config.with_gateway_timeout(seconds=float(timeout))
        if url := env.get("TABLESIDE_DATABASE_URL"):
            config = config.with_database_url(url)
        if offset := env.get("TABLESIDE_UTC_OFFSET_HOURS"):
            config = config.with_timezone(timezone(timedelta(hours=float(offset))))
        if secret := env.get("TABLESIDE_WEBHOOK_SECRET"):
            config = config.with_webhook_secret(secret)

        return config


__all__ = (
    "TAX_RATE",
    "RESERVATION_FEE",
    "MAX_PARTY_SIZE",
    "Config",
)
