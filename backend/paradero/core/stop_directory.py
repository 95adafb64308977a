"""In-memory directory of every stop code, refreshed on a schedule."""

import logging

from paradero.core.errors import UpstreamFetchFailure
from paradero.core.red_client import RedClient
from paradero.core.stop_resolver import search_codes

logger = logging.getLogger(__name__)


class StopDirectory:
    """Holds the network-wide stop code list for manual stop entry."""

    def __init__(self, red: RedClient) -> None:
        self.red = red
        self.codes: list[str] = []

    async def refresh(self) -> None:
        try:
            codes = await self.red.fetch_stop_codes()
        except UpstreamFetchFailure as e:
            # Keep the previous list; manual entry still works with it
            logger.warning("Stop code refresh failed, keeping %d cached codes: %s", len(self.codes), e)
            return
        if codes:
            self.codes = codes
        logger.info("Stop directory holds %d codes", len(self.codes))

    def search(self, prefix: str, limit: int = 50) -> list[str]:
        return search_codes(self.codes, prefix)[:limit]
