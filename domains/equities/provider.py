"""
Stock Data Provider — HTTP client for the index data API and record sources.

Responsibility:
- GET tier datasets and per-symbol details with RapidAPI key/host headers
- Unwrap array / {data: [...]} / {stocks: [...]} responses
- Translate transport and shape problems into DataProviderError
- Ordered record sources: remote tier, then the offline loss-making sample
"""

import copy
import logging
import os
from typing import Any

import httpx

from domains.equities.config import SYMBOL_DETAIL_ENDPOINT, get_tier_endpoint
from domains.equities.records import parse_numeric
from domains.equities.sample_data import LOSS_MAKING_SAMPLE
from observability.logger import Observability
from shared.models import StructuredQuery

logger = logging.getLogger(__name__)

DEFAULT_API_HOST = "indian-stock-market.p.rapidapi.com"
ENVELOPE_KEYS = ("data", "stocks")


class DataProviderError(RuntimeError):
    """The data provider was unreachable, errored, or returned an unknown shape."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def unwrap_records(payload: Any) -> list[dict]:
    """Return the record list from a provider response body."""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in ENVELOPE_KEYS:
            if isinstance(payload.get(key), list):
                return [item for item in payload[key] if isinstance(item, dict)]
    raise DataProviderError(f"Unrecognized response shape: {type(payload).__name__}")


def has_loss_condition(query: StructuredQuery) -> bool:
    """True when the query asks for negative earnings (eps below zero)."""
    for condition in query.conditions:
        if condition.field != "eps" or condition.operator not in ("<", "<="):
            continue
        threshold = parse_numeric(condition.value) if not isinstance(condition.value, list) else None
        if threshold is not None and threshold <= 0:
            return True
    return False


class StockDataProvider:
    """Async client for the index data API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        api_host: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_host = api_host or os.getenv("STOCK_API_HOST", DEFAULT_API_HOST).strip() or DEFAULT_API_HOST
        self.base_url = (base_url or os.getenv("STOCK_API_BASE_URL", "").strip() or f"https://{self.api_host}").rstrip("/")
        self.api_key = (api_key if api_key is not None else os.getenv("STOCK_API_KEY", "")).strip()
        self.timeout_seconds = timeout_seconds or float(os.getenv("STOCK_API_TIMEOUT_SECONDS", "15"))
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    @property
    def headers(self) -> dict[str, str]:
        return {"x-rapidapi-key": self.api_key, "x-rapidapi-host": self.api_host}

    async def fetch_tier(self, tier: str, request_id: str | None = None) -> list[dict]:
        """Fetch every record of a data tier."""
        endpoint = get_tier_endpoint(tier)
        obs = Observability(request_id)
        with obs.measure("data_fetch", {"tier": tier, "endpoint": endpoint}) as extra:
            records = unwrap_records(await self._get(endpoint))
            extra["records"] = len(records)
        logger.info("Fetched %d records from tier %s", len(records), tier)
        return records

    async def fetch_symbol(self, symbol: str) -> dict:
        """Fetch the detail document for one symbol."""
        payload = await self._get(SYMBOL_DETAIL_ENDPOINT.format(symbol=symbol))
        if not isinstance(payload, dict):
            raise DataProviderError(f"Unrecognized detail shape for {symbol}: {type(payload).__name__}")
        return payload

    async def _get(self, path: str) -> Any:
        try:
            response = await self._client.get(path, headers=self.headers, timeout=self.timeout_seconds)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code if e.response is not None else None
            raise DataProviderError(f"Data provider error: {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise DataProviderError(f"Data provider unreachable: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise DataProviderError(f"Data provider returned invalid JSON: {e}") from e

    async def close(self) -> None:
        """Close persistent connections."""
        await self._client.aclose()


class RemoteTierSource:
    """Records of the chosen tier from the live provider."""

    name = "remote"
    offline = False

    def __init__(self, provider: StockDataProvider):
        self.provider = provider

    def applies(self, query: StructuredQuery) -> bool:
        return True

    async def fetch(self, tier: str, query: StructuredQuery, request_id: str | None = None) -> list[dict]:
        return await self.provider.fetch_tier(tier, request_id=request_id)


class OfflineLossSampleSource:
    """Bundled loss-making sample, only for negative-earnings screens."""

    name = "offline_loss_sample"
    offline = True

    def applies(self, query: StructuredQuery) -> bool:
        return has_loss_condition(query)

    async def fetch(self, tier: str, query: StructuredQuery, request_id: str | None = None) -> list[dict]:
        logger.warning("Serving offline loss-making sample in place of tier %s", tier)
        return copy.deepcopy(LOSS_MAKING_SAMPLE)
