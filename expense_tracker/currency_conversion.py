from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import http.client
import json
import logging
from typing import Protocol
from urllib.request import urlopen

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://v6.exchangerate-api.com/v6"
ONE = Decimal("1")


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot produce a rate for a pair."""


class RateProvider(Protocol):
    def get_rate(self, source_currency: str, target_currency: str) -> Decimal: ...


@dataclass(frozen=True)
class RateResolution:
    rate: Decimal
    source: str


@dataclass(frozen=True)
class Unresolved:
    reason: str


@dataclass
class ExchangeRateApiProvider:
    """Pair lookups against ExchangeRate-API.

    One request per lookup, no retries. Every failure surfaces as
    ``RateProviderUnavailable``.
    """

    api_key: str = ""
    base_url: str = DEFAULT_API_BASE_URL
    timeout_seconds: float = 8

    def get_rate(self, source_currency: str, target_currency: str) -> Decimal:
        source = normalize_currency(source_currency)
        target = normalize_currency(target_currency)
        if not self.api_key:
            raise RateProviderUnavailable("Exchange rate API key is not configured")

        payload = self._fetch_pair(source, target)
        result = payload.get("result")
        if result == "error":
            raise RateProviderUnavailable(
                f"Exchange rate API error: {payload.get('error-type', 'unknown')}"
            )
        if result != "success":
            raise RateProviderUnavailable("Exchange rate API returned an unexpected payload")

        rate = _coerce_rate(payload.get("conversion_rate"))
        if rate is None or rate <= 0:
            raise RateProviderUnavailable("Exchange rate API response missing conversion_rate")
        return rate

    def pair_url(self, source: str, target: str) -> str:
        return f"{self.base_url.rstrip('/')}/{self.api_key}/pair/{source}/{target}"

    def _fetch_pair(self, source: str, target: str) -> dict:
        url = self.pair_url(source, target)
        try:
            with urlopen(url, timeout=self.timeout_seconds) as response:
                status = getattr(response, "status", 200)
                if not 200 <= status < 300:
                    raise RateProviderUnavailable(
                        f"Exchange rate API request failed with status {status}"
                    )
                payload = json.load(response)
        except (OSError, http.client.HTTPException, ValueError) as exc:
            raise RateProviderUnavailable("Exchange rate API unavailable") from exc

        if not isinstance(payload, dict):
            raise RateProviderUnavailable("Exchange rate API returned an unexpected payload")
        return payload


def resolve_rate(
    source_currency: str,
    target_currency: str,
    manual_rate: Decimal | int | float | str | None = None,
    rate_provider: RateProvider | None = None,
) -> RateResolution | Unresolved:
    """Resolve the rate that converts ``source_currency`` into ``target_currency``.

    Same-currency pairs always resolve to 1, a positive manual rate is used
    as-is, and only otherwise is the provider consulted. A provider failure
    is an expected outcome and comes back as ``Unresolved``.
    """
    source = normalize_currency(source_currency)
    target = normalize_currency(target_currency)

    if source == target:
        return RateResolution(rate=ONE, source="identity")

    coerced_manual = _coerce_rate(manual_rate)
    if coerced_manual is not None and coerced_manual > 0:
        return RateResolution(rate=coerced_manual, source="manual")

    if rate_provider is None:
        logger.warning("No rate provider configured for %s->%s", source, target)
        return Unresolved(reason="No rate provider configured")

    try:
        rate = rate_provider.get_rate(source, target)
    except RateProviderUnavailable as exc:
        logger.warning("Rate lookup %s->%s unresolved: %s", source, target, exc)
        return Unresolved(reason=str(exc))

    logger.info("Resolved rate %s->%s = %s", source, target, rate)
    return RateResolution(rate=rate, source="remote")


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not (normalized.isascii() and normalized.isalpha()):
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def _coerce_rate(value: Decimal | int | float | str | None) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        return None
    if not rate.is_finite():
        return None
    return rate
