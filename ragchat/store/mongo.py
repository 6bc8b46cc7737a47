"""
MongoDB (vCore) store: chat sessions, messages and vector search.

Sessions and messages share the completions collection and are filtered by
their ``Type`` field. Vectorized records live in one collection per source
(products, customers, ...) with the embedding in a ``vector`` field.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from bson import json_util
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ragchat.session.models import Message, Session
from ragchat.shared.config import settings
from ragchat.shared.exceptions import PersistenceError, RetrievalError
from ragchat.shared.logging import get_logger
from ragchat.store.base import ChatStore

logger = get_logger(__name__)

VECTOR_FIELD = "vector"


def vector_index_definition(
    collection_name: str,
    index_type: str,
    dimensions: int = 1536,
    index_name: str = "vectorSearchIndex"
) -> Dict[str, Any]:
    """
    Build the ``createIndexes`` command for a cosmosSearch vector index.

    Args:
        collection_name: Collection holding the vectors
        index_type: "hnsw" (graph based) or "ivf" (clustering based)
        dimensions: Embedding dimensions
        index_name: Name of the index

    Returns:
        Command document for ``db.command``
    """
    if index_type == "hnsw":
        options = {
            "kind": "vector-hnsw",
            "m": 16,
            "efConstruction": 64,
            "similarity": "COS",
            "dimensions": dimensions,
        }
    elif index_type == "ivf":
        options = {
            "kind": "vector-ivf",
            "numLists": 2,
            "similarity": "COS",
            "dimensions": dimensions,
        }
    else:
        raise ValueError(f"Unsupported vector index type: {index_type}")

    return {
        "createIndexes": collection_name,
        "indexes": [
            {
                "name": index_name,
                "key": {VECTOR_FIELD: "cosmosSearch"},
                "cosmosSearchOptions": options,
            }
        ],
    }


def vector_search_pipeline(vector: Sequence[float], k: int) -> List[Dict[str, Any]]:
    """Aggregation pipeline returning the k nearest documents without ids or vectors."""
    return [
        {
            "$search": {
                "cosmosSearch": {
                    "vector": [float(v) for v in vector],
                    "path": VECTOR_FIELD,
                    "k": k,
                },
                "returnStoredSource": True,
            }
        },
        {"$project": {"_id": 0, VECTOR_FIELD: 0}},
    ]


def remove_vector_and_serialize(record: Dict[str, Any]) -> str:
    """JSON text of a record without its embedding, used as embedding input."""
    return json_util.dumps({k: v for k, v in record.items() if k != VECTOR_FIELD})


class MongoChatStore(ChatStore):
    """ChatStore on motor with transactional turn writes."""

    def __init__(
        self,
        connection: Optional[str] = None,
        database_name: Optional[str] = None,
        client: Optional[AsyncIOMotorClient] = None
    ):
        self.connection = connection or settings.mongo.connection
        self.database_name = database_name or settings.mongo.database_name
        self.completions_collection = settings.mongo.completions_collection
        self.max_vector_search_results = settings.mongo.max_vector_search_results
        self.vector_index_type = settings.mongo.vector_index_type

        self._client = client or AsyncIOMotorClient(self.connection)
        self._db: AsyncIOMotorDatabase = self._client[self.database_name]
        self._completions = self._db[self.completions_collection]

    # ------------------------------------------------------------------
    # Vector index and ingestion
    # ------------------------------------------------------------------

    async def ensure_vector_index(self, collection_name: str):
        """Create the vector index on a collection if it does not exist yet."""
        index_name = settings.mongo.vector_index_name
        try:
            indexes = await self._db[collection_name].list_indexes().to_list(length=None)
            if any(ix.get("name") == index_name for ix in indexes):
                return

            definition = vector_index_definition(
                collection_name,
                self.vector_index_type,
                dimensions=settings.mongo.vector_dimensions,
                index_name=index_name,
            )
            result = await self._db.command(definition)
            if result.get("ok") != 1:
                logger.error(
                    f"CreateIndex failed with response: {json_util.dumps(result)}",
                    extra={"action": "ensure_vector_index"}
                )
            else:
                logger.info(
                    "Vector index created",
                    extra={"action": "ensure_vector_index", "collection": collection_name}
                )
        except PyMongoError as e:
            logger.error(f"ensure_vector_index({collection_name}): {e}")
            raise PersistenceError(f"Failed to create vector index on {collection_name}: {e}") from e

    async def import_and_vectorize(
        self,
        collection_name: str,
        records: Iterable[Dict[str, Any]],
        embedder
    ) -> int:
        """
        Embed each record and insert it with its vector.

        Args:
            collection_name: Target collection
            records: Source records (any existing vector is replaced)
            embedder: Object with ``async embed(text) -> (vector, tokens)``

        Returns:
            Number of records inserted
        """
        collection = self._db[collection_name]
        inserted = 0
        try:
            for record in records:
                vector, _ = await embedder.embed(remove_vector_and_serialize(record))
                document = dict(record)
                document[VECTOR_FIELD] = vector
                await collection.insert_one(document)
                inserted += 1
        except PyMongoError as e:
            logger.error(f"import_and_vectorize({collection_name}): {e}")
            raise PersistenceError(f"Failed to import into {collection_name}: {e}") from e

        return inserted

    def documents_to_text(self, documents: Iterable[Dict[str, Any]]) -> str:
        """Extended JSON keeps ObjectId, dates and decimals readable."""
        return " ".join(json_util.dumps(doc) for doc in documents)

    async def vector_search(
        self,
        collection_name: str,
        vector: Sequence[float]
    ) -> List[Dict[str, Any]]:
        pipeline = vector_search_pipeline(vector, self.max_vector_search_results)
        try:
            cursor = self._db[collection_name].aggregate(pipeline)
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"vector_search({collection_name}): {e}")
            raise RetrievalError(f"Vector search on {collection_name} failed: {e}") from e

    # ------------------------------------------------------------------
    # Sessions and messages
    # ------------------------------------------------------------------

    async def get_sessions(self) -> List[Session]:
        try:
            cursor = self._completions.find({"Type": "Session"}, {"_id": 0})
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"get_sessions(): {e}")
            raise PersistenceError(f"Failed to read sessions: {e}") from e
        return [Session.from_document(doc) for doc in docs]

    async def get_session_messages(self, session_id: str) -> List[Message]:
        try:
            cursor = self._completions.find(
                {"Type": "Message", "SessionId": session_id},
                {"_id": 0}
            ).sort("TimeStamp", 1)
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"get_session_messages(): {e}", extra={"session_id": session_id})
            raise PersistenceError(f"Failed to read messages of {session_id}: {e}") from e
        return [Message.from_document(doc) for doc in docs]

    async def insert_session(self, session: Session):
        try:
            await self._completions.insert_one(session.to_document())
        except PyMongoError as e:
            logger.error(f"insert_session(): {e}", extra={"session_id": session.session_id})
            raise PersistenceError(f"Failed to insert session: {e}") from e

    async def update_session(self, session: Session):
        try:
            result = await self._completions.replace_one(
                {"Type": "Session", "SessionId": session.session_id},
                session.to_document()
            )
        except PyMongoError as e:
            logger.error(f"update_session(): {e}", extra={"session_id": session.session_id})
            raise PersistenceError(f"Failed to update session: {e}") from e
        if result.matched_count == 0:
            logger.error("update_session(): no such session", extra={"session_id": session.session_id})
            raise PersistenceError(f"Session {session.session_id} missing from store")

    async def upsert_session_batch(
        self,
        session: Session,
        prompt_message: Message,
        completion_message: Message
    ):
        try:
            async with await self._client.start_session() as txn:
                async with txn.start_transaction():
                    result = await self._completions.replace_one(
                        {"Type": "Session", "SessionId": session.session_id, "Id": session.id},
                        session.to_document(),
                        session=txn
                    )
                    if result.matched_count == 0:
                        # Raising inside the block aborts the transaction
                        raise PersistenceError(
                            f"Session {session.session_id} missing from store"
                        )
                    await self._completions.insert_many(
                        [prompt_message.to_document(), completion_message.to_document()],
                        session=txn
                    )
        except PyMongoError as e:
            logger.error(f"upsert_session_batch(): {e}", extra={"session_id": session.session_id})
            raise PersistenceError(f"Transaction for {session.session_id} aborted: {e}") from e

    async def delete_session_and_messages(self, session_id: str):
        try:
            await self._completions.delete_many({"SessionId": session_id})
        except PyMongoError as e:
            logger.error(f"delete_session_and_messages(): {e}", extra={"session_id": session_id})
            raise PersistenceError(f"Failed to delete session {session_id}: {e}") from e

    async def health_check(self) -> bool:
        """Check if MongoDB answers a ping."""
        try:
            result = await self._client.admin.command("ping")
            return result.get("ok") == 1
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            return False

    async def close(self):
        self._client.close()
        logger.info("MongoDB client closed")
