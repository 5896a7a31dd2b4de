"""Repository for the per-user streak cache."""

from motor.motor_asyncio import AsyncIOMotorCollection

from bodyscan_api.models.scan import StreakSummary

from .base import BaseRepository


class StreakRepository(BaseRepository[StreakSummary]):
    """
    Cached streak summary, one document per user keyed by user id.

    Not authoritative: it can always be rebuilt from completed scans.
    """

    def __init__(self, collection: AsyncIOMotorCollection):
        super().__init__(collection)

    async def get_streak(self, user_id: str) -> StreakSummary | None:
        """Get the cached streak for a user, if any."""
        doc = await self.collection.find_one({"_id": user_id})
        if doc is None:
            return None
        doc.pop("_id", None)
        return StreakSummary.model_validate(doc)

    async def save_streak(self, user_id: str, streak: StreakSummary) -> None:
        """Replace the cached streak for a user."""
        await self.update_one(user_id, streak.model_dump(), upsert=True)
