from .protocol import Materializer
from .http import WebhookMaterializer, OccurrencePayload

__all__ = ["Materializer", "WebhookMaterializer", "OccurrencePayload"]
