"""
Listing glue: the agent's properties and listing imports.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..adapters.records import ListingPayload, PostingRecord, parse_record, source_id_from_url
from ..domain.exceptions import PayloadError
from ..domain.models import AgentSession, Property
from ..domain.palette import PALETTE, assign_colors

logger = logging.getLogger(__name__)


class ListingStoreProtocol(Protocol):
    """Protocol describing the store calls needed for listings."""

    async def fetch_postings(self, publisher_id: str) -> List[PostingRecord]:
        """Return the publisher's postings, newest first."""

    async def find_posting_by_source_id(self, source_id: str) -> Optional[PostingRecord]:
        """Return the posting imported from ``source_id``, if any."""

    async def insert_posting(self, row: Dict[str, Any]) -> PostingRecord:
        """Insert a posting and return it with its generated id."""

    async def insert_listing_images(self, rows: List[Dict[str, Any]]) -> None:
        """Insert image rows for a posting."""

    async def delete_posting(self, posting_id: str) -> None:
        """Delete a posting by id."""


class ListingSourceProtocol(Protocol):
    """Protocol for the external listings API."""

    async def fetch_listing(self, source_id: str) -> Dict[str, Any]:
        """Return the raw listing document."""


class ListingService:
    """Loads and imports the signed-in agent's listings."""

    def __init__(
        self,
        store: ListingStoreProtocol,
        session: AgentSession,
        palette: Sequence[str] = PALETTE,
    ) -> None:
        self._store = store
        self._session = session
        self._palette = tuple(palette)

    async def load_properties(self) -> List[Property]:
        """Return the agent's properties with display colours assigned."""
        agent_id = self._session.require_agent()
        postings = await self._store.fetch_postings(agent_id)
        return assign_colors([posting.to_property() for posting in postings], self._palette)

    async def import_listing(
        self,
        url: str,
        source: ListingSourceProtocol,
    ) -> PostingRecord:
        """
        Import a listing by its public URL.

        The document is validated before anything is written. A listing
        that was already imported is refused.

        Raises:
            AuthMissing: No agent is signed in.
            PayloadError: Bad URL, duplicate import or malformed document.
            PersistenceError: A store call failed.
        """
        agent_id = self._session.require_agent()
        source_id = source_id_from_url(url)

        existing = await self._store.find_posting_by_source_id(source_id)
        if existing is not None:
            raise PayloadError("This property has already been imported")

        raw = await source.fetch_listing(source_id)
        payload = parse_record(ListingPayload, raw)

        posting = await self._store.insert_posting(payload.to_posting(agent_id))
        images = payload.image_rows(posting.id)
        if images:
            await self._store.insert_listing_images(images)

        logger.info(
            "Imported listing %s as posting %s with %d image(s)",
            source_id,
            posting.id,
            len(images),
        )
        return posting

    async def delete_listing(self, posting_id: str) -> None:
        self._session.require_agent()
        await self._store.delete_posting(posting_id)
        logger.info("Deleted posting %s", posting_id)
