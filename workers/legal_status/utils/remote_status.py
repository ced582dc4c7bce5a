"""HTTP client for the patent-office status gateway."""

from typing import Optional

import httpx
import structlog

from ..models.legal_status import RemoteStatus
from ..services.ports import RemoteStatusPort

logger = structlog.get_logger(__name__)


class RemoteStatusClient(RemoteStatusPort):
    """Fetches authoritative legal status from ``GET {base_url}/patents/{id}/legal-status``.

    A forced fetch adds ``full=true`` so the gateway bypasses its own cache.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client

    async def connect(self):
        """Open the HTTP connection pool."""
        if self.client is None:
            self.client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
            logger.info("Remote status client ready", base_url=self.base_url)

    async def disconnect(self):
        """Close the HTTP connection pool."""
        try:
            if self.client:
                await self.client.aclose()
                logger.info("Remote status client closed")
        except Exception as e:
            logger.error("Failed to close remote status client", error=str(e))

    async def fetch_remote_status(self, patent_id: str, force: bool = False) -> RemoteStatus:
        params = {"full": "true"} if force else None
        try:
            response = await self.client.get(f"/patents/{patent_id}/legal-status", params=params)
            response.raise_for_status()
            return RemoteStatus.model_validate(response.json())
        except Exception as e:
            logger.error("Failed to fetch remote status", patent_id=patent_id, error=str(e))
            raise
