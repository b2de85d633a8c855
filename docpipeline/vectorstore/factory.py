"""
Vector Index Factory

The worker entry points only call get_vector_index() and never touch the
concrete classes directly.
"""

from __future__ import annotations

import weaviate

from docpipeline.core.config import Settings
from docpipeline.vectorstore.base import VectorIndexBase
from docpipeline.vectorstore.weaviate_store import WeaviateVectorIndex, create_weaviate_client


def get_vector_index(
    settings:   Settings,
    index_name: str,
    client:     weaviate.WeaviateClient | None = None,
) -> VectorIndexBase:
    """
    Return the vector index for `index_name`.
    Pass a shared client when one already exists for the worker process.
    """
    return WeaviateVectorIndex(
        index_name=index_name,
        client=client or create_weaviate_client(settings),
    )
