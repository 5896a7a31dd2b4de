"""Base repository class with common database operations."""

from enum import Enum
from typing import Any, Generic, TypeVar

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel

from bodyscan_api.utils.dates import utc_now

T = TypeVar("T", bound=BaseModel)


def to_document(value: Any) -> Any:
    """Recursively convert Pydantic models into plain BSON-friendly values."""
    if isinstance(value, BaseModel):
        return to_document(value.model_dump())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_document(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_document(v) for v in value]
    return value


class BaseRepository(Generic[T]):
    """
    Base repository providing common CRUD operations.

    Documents use application-assigned string ids as `_id`. Subclasses set
    `model_class` to enable automatic document-to-model conversion.
    """

    model_class: type[T] | None = None

    def __init__(self, collection: AsyncIOMotorCollection):
        """
        Initialize repository with a MongoDB collection.

        Args:
            collection: Motor collection instance
        """
        self.collection = collection

    def _to_model(self, doc: dict[str, Any] | None) -> T | dict[str, Any] | None:
        """Convert MongoDB document to Pydantic model if model_class is set."""
        if doc is None:
            return None
        if self.model_class is not None:
            if "_id" in doc:
                doc["id"] = str(doc.pop("_id"))
            return self.model_class.model_validate(doc)
        return doc

    def _to_models(self, docs: list[dict[str, Any]]) -> list[T | dict[str, Any]]:
        """Convert list of MongoDB documents to models."""
        return [self._to_model(doc) for doc in docs if doc is not None]

    async def find_by_id(self, id: str) -> T | dict[str, Any] | None:
        """
        Find document by ID.

        Args:
            id: Document id

        Returns:
            Document as model or dict, or None if not found
        """
        doc = await self.collection.find_one({"_id": id})
        return self._to_model(doc)

    async def find_many(
        self,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        limit: int | None = None,
    ) -> list[T | dict[str, Any]]:
        """
        Find multiple documents matching filter.

        Args:
            filter: MongoDB query filter
            sort: List of (field, direction) tuples
            limit: Maximum documents to return (None returns every match)

        Returns:
            List of documents as models or dicts
        """
        cursor = self.collection.find(filter or {})

        if sort:
            cursor = cursor.sort(sort)

        if limit:
            cursor = cursor.limit(limit)

        docs = await cursor.to_list(length=limit or None)
        return self._to_models(docs)

    async def insert_one(self, document: dict[str, Any]) -> str:
        """
        Insert a single document.

        Args:
            document: Document to insert, `_id` included

        Returns:
            Inserted document ID as string
        """
        now = utc_now()
        document.setdefault("created_at", now)
        document.setdefault("updated_at", now)

        result = await self.collection.insert_one(document)
        return str(result.inserted_id)

    async def update_one(
        self,
        id: str,
        update: dict[str, Any],
        extra_filter: dict[str, Any] | None = None,
        upsert: bool = False,
    ) -> bool:
        """
        Update a single document by ID.

        Args:
            id: Document id
            update: Fields to set (wrapped in $set if not an operator)
            extra_filter: Additional conditions the document must match
            upsert: Create document if it doesn't exist

        Returns:
            True if a document matched (or was upserted)
        """
        if not any(key.startswith("$") for key in update.keys()):
            update = {"$set": to_document(update)}

        if "$set" in update:
            update["$set"]["updated_at"] = utc_now()

        result = await self.collection.update_one(
            {"_id": id, **(extra_filter or {})},
            update,
            upsert=upsert,
        )
        return result.matched_count > 0 or result.upserted_id is not None

    async def delete_one(self, id: str) -> bool:
        """
        Delete a single document by ID.

        Returns:
            True if document was deleted
        """
        result = await self.collection.delete_one({"_id": id})
        return result.deleted_count > 0
