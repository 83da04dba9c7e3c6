"""Document-level storage for rows that carry external links.

Importers never touch ORM rows directly. They read plain dict documents,
build a modified deep copy, and hand it back:

    before = await stories.find_one_by_link(link, {"project_id": 5})
    after = copy.deepcopy(before) if before else {"project_id": 5}
    import_property(after, server, "details.title", value=..., overwrite=...)
    saved = await stories.save_if_changed(before, after)  # None: nothing written

Link lookup is a two-step filter: plain column criteria run in SQL, the
structural link match (``is_match`` against each entry of ``external``)
runs in Python over the remaining rows.
"""

import asyncio
import copy
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from story_mirror.db.models import Base, ExternalDataMixin
from story_mirror.external import Document, Link, is_match
from story_mirror.logging import get_logger

from .base import BaseRepository

logger = get_logger(__name__)

ExternalModelT = TypeVar("ExternalModelT", bound=Base)


class ExternalDataRepository(BaseRepository[ExternalModelT], Generic[ExternalModelT]):
    """Repository exposing rows of an ``ExternalDataMixin`` model as documents."""

    def __init__(
        self,
        session: AsyncSession,
        model_class: type[ExternalModelT],
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            session: Async SQLAlchemy session
            model_class: Model class mixing in ExternalDataMixin
            write_lock: Optional lock to serialize write operations
        """
        if not issubclass(model_class, ExternalDataMixin):
            raise TypeError(f"{model_class.__name__} does not carry external links")
        super().__init__(session, model_class, write_lock)
        self._fields: tuple[str, ...] = model_class.DOCUMENT_FIELDS

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def to_document(self, row: ExternalModelT) -> Document:
        """Copy a row's tracked columns into a detached dict."""
        document: Document = {"id": row.id}  # type: ignore[attr-defined]
        for name in self._fields:
            document[name] = copy.deepcopy(getattr(row, name))
        return document

    async def get_document(self, id: int) -> Document | None:
        """Get one document by primary key."""
        row = await self.get_by_id(id)
        return self.to_document(row) if row is not None else None

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def find(
        self,
        criteria: Mapping[str, Any] | None = None,
        *,
        link: Link | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Find documents by column criteria and, optionally, a link probe.

        Args:
            criteria: Column name to value (lists match any item)
            link: Probe that one of the row's links must structurally contain
            limit: Maximum number of documents to return

        Returns:
            Matching documents ordered by ID
        """
        documents: list[Document] = []
        for row in await self.get_where(criteria):
            if link is not None and not _has_link(row, link):
                continue
            documents.append(self.to_document(row))
            if limit is not None and len(documents) >= limit:
                break
        return documents

    async def find_one(
        self,
        criteria: Mapping[str, Any] | None = None,
        *,
        link: Link | None = None,
    ) -> Document | None:
        """Find the first matching document (lowest ID)."""
        documents = await self.find(criteria, link=link, limit=1)
        return documents[0] if documents else None

    async def find_by_link(
        self, link: Link, criteria: Mapping[str, Any] | None = None
    ) -> list[Document]:
        """Find documents having a link that matches ``link``."""
        return await self.find(criteria, link=link)

    async def find_one_by_link(
        self, link: Link, criteria: Mapping[str, Any] | None = None
    ) -> Document | None:
        """Find the document having a link that matches ``link``."""
        return await self.find_one(criteria, link=link)

    # -------------------------------------------------------------------------
    # Write Methods
    # -------------------------------------------------------------------------

    async def insert_one(self, document: Document) -> Document:
        """Insert a document and return it with its new ID.

        An insert that collides with an existing row on ``external_key``
        (another run created the same entity first) is applied to that row
        as an update instead.
        """
        values = {name: copy.deepcopy(document[name]) for name in self._fields if name in document}
        row = self._model_class(**values)
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self.flush()
        except IntegrityError:
            existing = await self._find_by_external_key(document)
            if existing is None:
                raise
            logger.info(
                "{} with key {} already exists as #{}, updating instead",
                self._model_class.__name__,
                document.get("external_key"),
                existing["id"],
            )
            return await self.update_one({**document, "id": existing["id"]})
        return self.to_document(row)

    async def update_one(self, document: Document) -> Document:
        """Write a document's tracked fields onto its row.

        Raises:
            LookupError: If no row has the document's ID
        """
        row = await self.get_by_id(document["id"])
        if row is None:
            raise LookupError(f"{self._model_class.__name__} #{document['id']} does not exist")
        for name in self._fields:
            if name in document:
                setattr(row, name, copy.deepcopy(document[name]))
        await self.flush()
        return self.to_document(row)

    async def save_one(self, document: Document) -> Document:
        """Insert the document if it has no ID yet, else update it."""
        if (document.get("id") or 0) >= 1:
            return await self.update_one(document)
        return await self.insert_one(document)

    async def save_if_changed(
        self,
        before: Document | None,
        after: Document,
        *,
        stamp: str | None = "itime",
    ) -> Document | None:
        """Save ``after`` unless it equals ``before``.

        Args:
            before: Document as found in storage (None when new)
            after: Modified deep copy
            stamp: Timestamp field set to now when a write happens

        Returns:
            The saved document, or None when nothing changed
        """
        if before is not None and after == before:
            return None
        if stamp:
            after[stamp] = datetime.now(UTC)
        return await self.save_one(after)

    async def _find_by_external_key(self, document: Document) -> Document | None:
        key = document.get("external_key")
        if not key:
            return None
        criteria: dict[str, Any] = {"external_key": key}
        if "project_id" in self._fields and document.get("project_id") is not None:
            criteria["project_id"] = document["project_id"]
        return await self.find_one(criteria)


def _has_link(row: Any, probe: Link) -> bool:
    return any(is_match(link, probe) for link in row.external or [])
