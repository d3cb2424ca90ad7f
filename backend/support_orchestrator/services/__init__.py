"""
Services package.
Clients for the networked collaborators: embeddings, vector index,
language generation, and the knowledge retriever built on them.
"""

from .embedding_service import EmbeddingService
from .generation_service import GenerationService
from .vector_index import VectorIndex, ChromaVectorIndex, InMemoryVectorIndex
from .knowledge_retriever import (
    KnowledgeRetriever,
    knowledge_namespace,
    ticket_namespace,
    faq_namespace,
    interaction_namespace
)

__all__ = [
    # Embeddings
    'EmbeddingService',

    # Generation
    'GenerationService',

    # Vector index
    'VectorIndex',
    'ChromaVectorIndex',
    'InMemoryVectorIndex',

    # Retrieval
    'KnowledgeRetriever',
    'knowledge_namespace',
    'ticket_namespace',
    'faq_namespace',
    'interaction_namespace',
]
