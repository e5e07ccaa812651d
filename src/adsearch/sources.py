"""
Source record providers for the ad catalog.

A provider returns two row sets: the ad rows and the format lookup rows.
Each row maps column header -> string cell value.

- GoogleSheetsSource: Sheets API v4 over httpx with retry/backoff
- CSVSource: two local CSV exports (useful offline and for seeding)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import httpx
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when the source is unreachable or returns malformed data."""
    pass


class _RetryableSourceError(ProviderError):
    """Transient failure (429/5xx); retried before surfacing."""
    pass


@dataclass
class SourceRows:
    """Raw rows from one fetch."""

    ad_rows: list[dict[str, str]] = field(default_factory=list)
    format_rows: list[dict[str, str]] = field(default_factory=list)


class SourceProvider(Protocol):
    def fetch(self) -> SourceRows: ...


def rows_from_values(values: list[list]) -> list[dict[str, str]]:
    """
    Convert a Sheets ``values`` grid into header-keyed rows.

    The first row is the header. Short rows are padded with empty strings
    (the API omits trailing empty cells); fully empty rows are dropped.
    """
    if not values:
        return []

    header = [str(h).strip() for h in values[0]]
    rows = []
    for raw in values[1:]:
        cells = [str(c) for c in raw] + [""] * (len(header) - len(raw))
        if not any(c.strip() for c in cells):
            continue
        rows.append({name: cells[i] for i, name in enumerate(header) if name})
    return rows


class GoogleSheetsSource:
    """
    Reads the ad sheet and the format sheet through the Sheets API.

    Example:
        source = GoogleSheetsSource(sheet_id="1AbC...", api_key="...")
        rows = source.fetch()
        print(len(rows.ad_rows))
    """

    BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"

    def __init__(
        self,
        sheet_id: str,
        api_key: str,
        ad_sheet: str = "Sheet1",
        format_sheet: str = "Sheet2",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            sheet_id: Spreadsheet id from the sheet URL
            api_key: Google API key with Sheets read access
            ad_sheet: Tab holding one row per ad
            format_sheet: Tab holding the format lookup
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        if not sheet_id:
            raise ValueError("sheet_id is required")
        self.sheet_id = sheet_id
        self.api_key = api_key
        self.ad_sheet = ad_sheet
        self.format_sheet = format_sheet
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.BASE_URL,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    def _handle_response(self, response: httpx.Response) -> dict:
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableSourceError(
                f"Sheets API error {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"Sheets API error {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Malformed Sheets API response: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TransportError, _RetryableSourceError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _get_values(self, client: httpx.Client, sheet_name: str) -> list[list]:
        path = f"/{self.sheet_id}/values/{quote(sheet_name, safe='')}"
        logger.debug(f"Request: GET {path}")
        response = client.get(path, params={"key": self.api_key})
        data = self._handle_response(response)
        values = data.get("values", [])
        if not isinstance(values, list):
            raise ProviderError(f"Unexpected 'values' payload for sheet {sheet_name!r}")
        return values

    def fetch(self) -> SourceRows:
        """
        Fetch both sheets.

        Raises:
            ProviderError: On any transport, HTTP or payload failure
        """
        try:
            with self._client() as client:
                ad_values = self._get_values(client, self.ad_sheet)
                format_values = self._get_values(client, self.format_sheet)
        except ProviderError:
            raise
        except (httpx.HTTPError, RetryError) as e:
            raise ProviderError(f"Sheets API unreachable: {e}") from e

        rows = SourceRows(
            ad_rows=rows_from_values(ad_values),
            format_rows=rows_from_values(format_values),
        )
        logger.info(
            f"Fetched {len(rows.ad_rows)} ad rows and "
            f"{len(rows.format_rows)} format rows from Google Sheets"
        )
        return rows


class CSVSource:
    """Reads the two sheets from local CSV exports."""

    def __init__(self, ads_path: str | Path, formats_path: str | Path | None = None):
        self.ads_path = Path(ads_path)
        self.formats_path = Path(formats_path) if formats_path else None

    @staticmethod
    def _read(path: Path) -> list[dict[str, str]]:
        import pandas as pd

        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        df.columns = [str(c).strip() for c in df.columns]
        return df.to_dict(orient="records")

    def fetch(self) -> SourceRows:
        try:
            ad_rows = self._read(self.ads_path)
            format_rows = self._read(self.formats_path) if self.formats_path else []
        except (OSError, ValueError) as e:
            raise ProviderError(f"Failed to read CSV source: {e}") from e

        logger.info(f"Read {len(ad_rows)} ad rows from {self.ads_path}")
        return SourceRows(ad_rows=ad_rows, format_rows=format_rows)
