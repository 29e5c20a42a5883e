"""
Client for the external listings API the dashboard imports from.
"""

import asyncio
from typing import Any, Dict

import requests

from ..domain.exceptions import PersistenceError


class ListingSourceClient:
    """Fetches raw listing documents by their numeric id."""

    API_ENDPOINT = "https://api.sosiva451.com"

    def __init__(self, endpoint: str = API_ENDPOINT, timeout: int = 30):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    def _get(self, source_id: str) -> Dict[str, Any]:
        url = f"{self.endpoint}/Avisos/{source_id}"

        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise PersistenceError(f"Failed to fetch listing {source_id}: {e}") from e
        except ValueError as e:
            raise PersistenceError(f"Listing {source_id} is not valid JSON: {e}") from e

    async def fetch_listing(self, source_id: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get, source_id)
