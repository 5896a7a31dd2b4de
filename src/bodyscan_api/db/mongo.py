"""MongoDB connection management using Motor async driver."""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase


class MongoDB:
    """
    MongoDB connection handle.

    Constructed once by the application (or a test) and passed to whatever
    needs a database, instead of living in module-level state.

    Usage:
        mongo = MongoDB(settings.mongo_uri, settings.db_name)
        db = mongo.get_database()
        ...
        mongo.close()
    """

    def __init__(self, uri: str, db_name: str = "bodyscan_db"):
        """
        Initialize MongoDB connection.

        Args:
            uri: MongoDB connection URI
            db_name: Database name to use
        """
        self._db_name = db_name
        self.client: AsyncIOMotorClient | None = AsyncIOMotorClient(uri, tz_aware=True)

    def close(self) -> None:
        """Close MongoDB connection."""
        if self.client is not None:
            self.client.close()
            self.client = None

    def get_client(self) -> AsyncIOMotorClient:
        """
        Get the MongoDB client.

        Raises:
            RuntimeError: If the connection was closed
        """
        if self.client is None:
            raise RuntimeError("MongoDB connection is closed.")
        return self.client

    def get_database(self, name: str | None = None) -> AsyncIOMotorDatabase:
        """
        Get a database instance.

        Args:
            name: Database name (uses default if not provided)

        Returns:
            AsyncIOMotorDatabase instance
        """
        client = self.get_client()
        return client[name or self._db_name]

    def is_connected(self) -> bool:
        """Check if the client is open."""
        return self.client is not None
