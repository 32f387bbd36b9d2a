"""Bank of Israel exchange-rate API client"""

import httpx
from datetime import date
from typing import Optional
from statement_ledger.domain.exceptions import ExchangeRateAPIError
from statement_ledger.config import settings
from statement_ledger.infrastructure.observability.metrics import exchange_rate_failures_counter

SUPPORTED_CURRENCIES = ("USD", "EUR")


class BankOfIsraelClient:
    """Client for the Bank of Israel SDMX representative-rate series"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.exchange_rate_api_base
        self.timeout = timeout or settings.http_timeout_seconds

    async def get_rate(self, rate_date: date, currency: str) -> Optional[float]:
        """
        Fetch the ILS rate for one unit of currency in the month of rate_date.

        Returns None for unsupported currencies or an empty series.

        Raises:
            ExchangeRateAPIError: On timeout, HTTP errors, or invalid response
        """
        if currency not in SUPPORTED_CURRENCIES:
            return None

        period = f"{rate_date.year}-{rate_date.month:02d}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/{currency}/dataflow",
                    params={"startPeriod": period, "endPeriod": period},
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                data = response.json()

                series = data.get("dataSets", [{}])[0].get("series") or {}
                if not series:
                    return None
                observations = next(iter(series.values())).get("observations") or {}
                if not observations:
                    return None
                # Observations are keyed by offset from the period start; take the latest
                latest_key = max(observations, key=int)
                return float(observations[latest_key][0])

            except httpx.TimeoutException as e:
                exchange_rate_failures_counter.inc()
                raise ExchangeRateAPIError(f"Exchange rate API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                exchange_rate_failures_counter.inc()
                raise ExchangeRateAPIError(f"Exchange rate API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                exchange_rate_failures_counter.inc()
                raise ExchangeRateAPIError(f"Exchange rate API unreachable: {e}") from e
            except (KeyError, IndexError, ValueError, TypeError, AttributeError) as e:
                exchange_rate_failures_counter.inc()
                raise ExchangeRateAPIError(f"Invalid exchange rate data: {e}") from e
