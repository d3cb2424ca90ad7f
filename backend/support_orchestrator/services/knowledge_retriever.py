"""
Knowledge retrieval over the tenant-scoped vector index.

Version: 1.0.0

Read paths (search, recall) never raise: embedding or index failures are
logged and an empty result is returned. Write paths raise
KnowledgeStoreError so callers decide whether the write matters.
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..exceptions import KnowledgeStoreError
from ..models.domain import InteractionHit, KnowledgeHit
from .embedding_service import EmbeddingService
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)


# ===========================
# Namespaces
# ===========================

def knowledge_namespace(tenant_id: str) -> str:
    return f"{tenant_id}-kb"


def ticket_namespace(tenant_id: str) -> str:
    return f"{tenant_id}-tickets"


def faq_namespace(tenant_id: str) -> str:
    return f"{tenant_id}-faqs"


def interaction_namespace(tenant_id: str) -> str:
    return f"{tenant_id}-interactions"


class KnowledgeRetriever:
    """
    Semantic store and search for tenant knowledge, resolved tickets,
    FAQ entries and past customer interactions.
    """

    def __init__(self, embedding_service: EmbeddingService, vector_index: VectorIndex):
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        logger.info("KnowledgeRetriever initialized")

    # ===========================
    # Read paths
    # ===========================

    async def search(
        self,
        query: str,
        namespace: str,
        top_k: int = 5,
        where: Optional[Dict[str, Any]] = None
    ) -> List[KnowledgeHit]:
        """
        Find the entries most similar to ``query``.

        Returns:
            At most ``top_k`` hits in descending score order; empty on failure
        """
        if not query or not query.strip() or top_k <= 0:
            return []

        try:
            vector = await self.embedding_service.embed(query)
            hits = await self.vector_index.query(namespace, vector, top_k, where=where)
        except Exception as e:
            logger.warning(
                f"Knowledge search failed in '{namespace}': {e}",
                extra={"namespace": namespace}
            )
            return []

        hits = sorted(hits, key=lambda hit: hit.score, reverse=True)[:top_k]
        logger.debug(f"Knowledge search in '{namespace}' returned {len(hits)} hits")
        return hits

    async def recall_interactions(
        self,
        customer_id: str,
        query: str,
        namespace: str,
        limit: int = 3
    ) -> List[InteractionHit]:
        """Past interactions of one customer most similar to ``query``."""
        hits = await self.search(
            query,
            namespace,
            top_k=limit,
            where={"customer_id": customer_id}
        )

        interactions = []
        for hit in hits:
            metadata = hit.metadata
            actions = metadata.get("actions") or {}
            if isinstance(actions, str):
                try:
                    actions = json.loads(actions)
                except ValueError:
                    actions = {}
            interactions.append(InteractionHit(
                id=hit.id,
                query=str(metadata.get("query", "")),
                response=str(metadata.get("response", "")),
                actions=actions if isinstance(actions, dict) else {},
                resolution=metadata.get("resolution"),
                timestamp=metadata.get("timestamp"),
                score=hit.score
            ))
        return interactions

    # ===========================
    # Write paths
    # ===========================

    async def store(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]],
        namespace: str,
        item_id: Optional[str] = None
    ) -> str:
        """
        Embed and store ``text``.

        The stored metadata also carries ``text`` and an ISO ``timestamp``.

        Returns:
            The entry id

        Raises:
            KnowledgeStoreError: If embedding or the index write fails
        """
        if not text or not text.strip():
            raise KnowledgeStoreError("Cannot store empty text", details={"namespace": namespace})

        entry_id = item_id or str(uuid.uuid4())
        entry_metadata = {
            **(metadata or {}),
            "text": text,
            "timestamp": datetime.utcnow().isoformat()
        }

        try:
            vector = await self.embedding_service.embed(text)
            await self.vector_index.upsert(namespace, entry_id, vector, text, entry_metadata)
        except Exception as e:
            logger.error(f"Failed to store knowledge in '{namespace}': {e}")
            raise KnowledgeStoreError(
                f"Failed to store knowledge: {e}",
                details={"namespace": namespace}
            ) from e

        return entry_id

    async def delete(self, item_id: str, namespace: str) -> None:
        """
        Raises:
            KnowledgeStoreError: If the index rejects the delete
        """
        try:
            await self.vector_index.delete(namespace, item_id)
        except Exception as e:
            logger.error(f"Failed to delete knowledge {item_id} from '{namespace}': {e}")
            raise KnowledgeStoreError(
                f"Failed to delete knowledge: {e}",
                details={"namespace": namespace, "item_id": item_id}
            ) from e

    async def batch_import(
        self,
        items: List[Dict[str, Any]],
        namespace: str
    ) -> List[Dict[str, Any]]:
        """
        Store several ``{"text", "metadata"}`` items one by one.

        Returns:
            One ``{"success", "id" | "error"}`` entry per item, in input order
        """
        results = []
        for item in items:
            try:
                entry_id = await self.store(item.get("text", ""), item.get("metadata"), namespace)
                results.append({"success": True, "id": entry_id})
            except KnowledgeStoreError as e:
                results.append({"success": False, "error": e.message})

        imported = sum(1 for r in results if r["success"])
        logger.info(f"✓ Batch import into '{namespace}': {imported}/{len(items)} stored")
        return results

    async def store_interaction(
        self,
        customer_id: str,
        query: str,
        response: str,
        actions: Optional[Dict[str, Any]],
        resolution: Optional[str],
        tenant_id: str
    ) -> str:
        """
        Remember one query/response exchange for later recall.

        Raises:
            KnowledgeStoreError: If the write fails
        """
        metadata = {
            "type": "interaction",
            "customer_id": customer_id,
            "query": query,
            "response": response,
            "actions": actions or {},
            "resolution": resolution
        }
        return await self.store(
            f"Customer: {query}\nAgent: {response}",
            metadata,
            interaction_namespace(tenant_id)
        )


__all__ = [
    'KnowledgeRetriever',
    'knowledge_namespace',
    'ticket_namespace',
    'faq_namespace',
    'interaction_namespace'
]
