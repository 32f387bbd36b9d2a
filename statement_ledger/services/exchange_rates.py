"""Exchange rates to ILS: database cache first, then the Bank of Israel API"""

import logging
from datetime import date
from typing import Optional
from sqlalchemy.orm import Session
from statement_ledger.config import settings
from statement_ledger.domain.exceptions import ExchangeRateAPIError
from statement_ledger.infrastructure.clients.exchange_rates import SUPPORTED_CURRENCIES, BankOfIsraelClient
from statement_ledger.infrastructure.database.repositories import ExchangeRateRepository

logger = logging.getLogger(__name__)


class ExchangeRateService:
    """Looks up, caches and records daily conversion rates"""

    def __init__(self, db: Session, client: BankOfIsraelClient | None = None):
        self.rates = ExchangeRateRepository(db)
        self.client = client or BankOfIsraelClient()

    async def get_rate(self, rate_date: date, currency: str) -> Optional[float]:
        """
        Rate converting one unit of currency to ILS on rate_date.

        Returns None when neither the cache nor the API has a rate; the caller
        keeps the parser-supplied amount in that case.
        """
        if currency == settings.local_currency:
            return 1.0

        cached = self.rates.get(rate_date, currency)
        if cached is not None:
            return cached.rate_to_ils

        if currency not in SUPPORTED_CURRENCIES:
            logger.warning("No exchange rate source for currency", extra={"currency": currency, "date": rate_date.isoformat()})
            return None

        try:
            rate = await self.client.get_rate(rate_date, currency)
        except ExchangeRateAPIError as e:
            logger.warning(
                "Exchange rate lookup failed",
                extra={"currency": currency, "date": rate_date.isoformat(), "error": str(e)},
            )
            return None

        if rate is None:
            logger.warning("Exchange rate not published", extra={"currency": currency, "date": rate_date.isoformat()})
            return None

        self.rates.upsert(rate_date, currency, rate, source="api")
        return rate

    def store_manual_rate(self, rate_date: date, currency: str, rate_to_ils: float) -> None:
        """Record a rate for currencies the API does not cover"""
        self.rates.upsert(rate_date, currency.upper(), rate_to_ils, source="manual")

    async def convert_to_ils(self, amount: float, currency: str, rate_date: date) -> Optional[float]:
        rate = await self.get_rate(rate_date, currency)
        if rate is None:
            return None
        return round(amount * rate, 2)
