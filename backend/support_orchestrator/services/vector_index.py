"""
Vector index abstraction.
ChromaDB implementation for deployments, in-memory implementation for
development and tests.

Version: 1.0.0

Namespaces map to collections. Scores are cosine similarities in [-1, 1],
higher is closer.
"""
import asyncio
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Dict, List, Optional

import chromadb

from ..models.domain import KnowledgeHit

logger = logging.getLogger(__name__)

# Metadata keys whose values were JSON-encoded for storage
JSON_FIELDS_KEY = "_json_fields"


class VectorIndex(ABC):
    """Abstract nearest-neighbour index partitioned by namespace."""

    @abstractmethod
    async def upsert(
        self,
        namespace: str,
        item_id: str,
        vector: List[float],
        text: str,
        metadata: Dict[str, Any]
    ) -> None:
        pass

    @abstractmethod
    async def query(
        self,
        namespace: str,
        vector: List[float],
        top_k: int,
        where: Optional[Dict[str, Any]] = None
    ) -> List[KnowledgeHit]:
        """
        Nearest neighbours of ``vector``.

        Args:
            where: Exact-match metadata filter

        Returns:
            Hits in descending score order, at most ``top_k``
        """
        pass

    @abstractmethod
    async def delete(self, namespace: str, item_id: str) -> None:
        pass

    async def close(self) -> None:
        return None


def flatten_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Encode non-scalar values as JSON; drop None values."""
    flat: Dict[str, Any] = {}
    encoded = []
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            flat[key] = value
        else:
            flat[key] = json.dumps(value, default=str)
            encoded.append(key)
    if encoded:
        flat[JSON_FIELDS_KEY] = ",".join(encoded)
    return flat


def restore_metadata(flat: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Inverse of :func:`flatten_metadata`."""
    metadata = dict(flat or {})
    encoded = metadata.pop(JSON_FIELDS_KEY, "")
    for key in filter(None, encoded.split(",")):
        try:
            metadata[key] = json.loads(metadata[key])
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Could not decode metadata field {key}")
    return metadata


def collection_name(namespace: str) -> str:
    """Map a namespace onto a valid Chroma collection name."""
    name = re.sub(r"[^a-zA-Z0-9._-]", "_", namespace).strip("._-") or "default"
    if len(name) < 3:
        name = f"ns_{name}"
    return name[:63]


class ChromaVectorIndex(VectorIndex):
    """
    ChromaDB-backed index, one cosine-space collection per namespace.

    Chroma's client is synchronous; calls run in the default executor.
    """

    def __init__(
        self,
        persist_directory: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 8000,
        client: Optional[Any] = None,
        timeout: float = 10.0
    ):
        if client is not None:
            self.client = client
        elif host:
            self.client = chromadb.HttpClient(host=host, port=port)
        else:
            self.client = chromadb.PersistentClient(path=persist_directory or "./data/chroma")

        self.timeout = timeout
        self._collections: Dict[str, Any] = {}

        logger.info(
            f"ChromaVectorIndex initialized "
            f"({'remote ' + host if host else 'local ' + str(persist_directory)})"
        )

    def _collection(self, namespace: str):
        name = collection_name(namespace)
        collection = self._collections.get(name)
        if collection is None:
            collection = self.client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"}
            )
            self._collections[name] = collection
        return collection

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, partial(func, *args, **kwargs)),
            timeout=self.timeout
        )

    def _upsert_sync(self, namespace, item_id, vector, text, metadata) -> None:
        self._collection(namespace).upsert(
            ids=[item_id],
            embeddings=[vector],
            documents=[text],
            metadatas=[flatten_metadata(metadata)]
        )

    def _query_sync(self, namespace, vector, top_k, where) -> List[KnowledgeHit]:
        collection = self._collection(namespace)
        count = collection.count()
        if count == 0:
            return []

        result = collection.query(
            query_embeddings=[vector],
            n_results=min(top_k, count),
            where=where or None,
            include=["documents", "metadatas", "distances"]
        )

        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        hits = [
            KnowledgeHit(
                id=item_id,
                text=documents[i] or "",
                metadata=restore_metadata(metadatas[i]),
                score=1.0 - float(distances[i])
            )
            for i, item_id in enumerate(ids)
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    def _delete_sync(self, namespace, item_id) -> None:
        self._collection(namespace).delete(ids=[item_id])

    async def upsert(self, namespace, item_id, vector, text, metadata) -> None:
        await self._run(self._upsert_sync, namespace, item_id, vector, text, metadata)

    async def query(self, namespace, vector, top_k, where=None) -> List[KnowledgeHit]:
        if top_k <= 0:
            return []
        return await self._run(self._query_sync, namespace, vector, top_k, where)

    async def delete(self, namespace, item_id) -> None:
        await self._run(self._delete_sync, namespace, item_id)


def cosine_similarity(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorIndex(VectorIndex):
    """Brute-force cosine index held in process memory."""

    def __init__(self):
        self.namespaces: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.lock = asyncio.Lock()

    async def upsert(self, namespace, item_id, vector, text, metadata) -> None:
        async with self.lock:
            self.namespaces.setdefault(namespace, {})[item_id] = {
                "vector": list(vector),
                "text": text,
                "metadata": json.loads(json.dumps(metadata, default=str))
            }

    async def query(self, namespace, vector, top_k, where=None) -> List[KnowledgeHit]:
        if top_k <= 0:
            return []

        async with self.lock:
            entries = list(self.namespaces.get(namespace, {}).items())

        hits = []
        for item_id, entry in entries:
            if where and any(entry["metadata"].get(k) != v for k, v in where.items()):
                continue
            hits.append(KnowledgeHit(
                id=item_id,
                text=entry["text"],
                metadata=dict(entry["metadata"]),
                score=cosine_similarity(vector, entry["vector"])
            ))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    async def delete(self, namespace, item_id) -> None:
        async with self.lock:
            self.namespaces.get(namespace, {}).pop(item_id, None)


__all__ = [
    'VectorIndex',
    'ChromaVectorIndex',
    'InMemoryVectorIndex',
    'flatten_metadata',
    'restore_metadata',
    'collection_name'
]
