"""Google Sheets v4 client used as the catalog source."""

import asyncio
from typing import Any

from googleapiclient.errors import HttpError

from support_bot.logging_config import get_logger
from support_bot.services.errors import CatalogError

logger = get_logger("sheets_service")


class SheetsService:
    def __init__(self, service: Any = None):
        self._service = service
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        if self._service is not None:
            self._service.close()

    async def read_rows(self, sheet_id: str, range_spec: str) -> list[list[str]]:
        """Rows of a range as strings. The first row holds the headers."""
        if self._service is None:
            raise CatalogError("Sheets is not configured")

        values_api = self._service.spreadsheets().values()
        try:
            async with self._lock:
                response = await asyncio.to_thread(
                    lambda: values_api.get(spreadsheetId=sheet_id, range=range_spec).execute()
                )
        except HttpError as e:
            logger.error(
                "Sheets API error",
                extra={"context": {"range": range_spec, "status": e.resp.status, "reason": e.reason}},
            )
            raise CatalogError(f"Sheets API error {e.resp.status} for {range_spec}") from e
        except Exception as e:
            logger.error(f"Sheets request failed: {range_spec}: {e}")
            raise CatalogError(f"Sheets request failed: {e}") from e

        values = response.get("values", [])
        return [[str(cell) for cell in row] for row in values]
