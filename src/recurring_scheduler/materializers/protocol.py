from datetime import datetime
from typing import Any, Dict, Protocol


class Materializer(Protocol):
    """
    Protocol class for materializers.
    """

    async def materialize(self, owner_context: Dict[str, Any], occurrence_time: datetime) -> Dict[str, Any]:
        """
        Produce the business record for one occurrence.

        Args:
            owner_context (Dict[str, Any]): Opaque reference to the owning business entity.
            occurrence_time (datetime): The grid slot being materialized.

        Returns:
            Dict[str, Any]: The created record. An ``id`` key, when present, is kept on the audit trail.
        """
        ...
