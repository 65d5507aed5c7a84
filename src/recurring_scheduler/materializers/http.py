import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel, Field

from recurring_scheduler.domain.definition import Frequency
from recurring_scheduler.errors import MaterializationError
from recurring_scheduler.materializers.protocol import Materializer
from recurring_scheduler.recurrence import add_periods

logger = logging.getLogger(__name__)


class OccurrencePayload(BaseModel):
    owner_context: Dict[str, Any] = Field(..., description="Opaque reference to the owning business entity")
    occurrence_time: datetime = Field(..., description="The grid slot being materialized")
    period_end: Optional[datetime] = Field(None, description="End of the period the record covers, used as its due date")


class WebhookMaterializer(Materializer):
    """
    Materializer that asks a business service to create the record over HTTP, using aiohttp.
    """

    def __init__(self, url: str, timeout: float = 30.0, headers: Optional[Dict[str, str]] = None,
                 frequency_key: str = "frequency"):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.frequency_key = frequency_key

    def build_payload(self, owner_context: Dict[str, Any], occurrence_time: datetime) -> OccurrencePayload:
        period_end = None
        frequency = owner_context.get(self.frequency_key)
        if frequency in {f.value for f in Frequency}:
            period_end = add_periods(occurrence_time, frequency)
        return OccurrencePayload(owner_context=owner_context, occurrence_time=occurrence_time, period_end=period_end)

    async def materialize(self, owner_context: Dict[str, Any], occurrence_time: datetime) -> Dict[str, Any]:
        """
        POST the occurrence to the webhook and return the decoded JSON response.

        Raises:
            MaterializationError: On timeout, connection failure or a non-2xx response.
        """
        payload = self.build_payload(owner_context, occurrence_time)
        logger.info("Sending occurrence webhook for %s at %s", owner_context, occurrence_time.isoformat())

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    self.url,
                    headers=self.headers,
                    data=payload.model_dump_json()
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise MaterializationError(f"Webhook responded with status {response.status}: {body}")
                    result = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise MaterializationError("Webhook request timed out") from e
        except aiohttp.ClientError as e:
            raise MaterializationError(f"Webhook request failed: {e}") from e

        if not isinstance(result, dict):
            return {"data": result}
        return result
