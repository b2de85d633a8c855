"""
Worker runtime — wires a DocumentPipeline from process Settings.

Both entry points (the storage-event handler and the Celery task) run each
invocation in a fresh event loop, so loop-bound resources (the async DB
engine, the Weaviate client) are opened per invocation and released when
the context exits.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from docpipeline.core.config import Settings
from docpipeline.db.metadata_store import MetadataStore
from docpipeline.db.session import create_engine, create_session_factory
from docpipeline.processing.embeddings import EmbeddingGenerator
from docpipeline.processing.ocr import TextractService
from docpipeline.services.pipeline import DocumentPipeline
from docpipeline.storage.s3 import ObjectStore
from docpipeline.vectorstore.weaviate_store import create_weaviate_client
from docpipeline.vectorstore.factory import get_vector_index

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_pipeline(settings: Settings) -> AsyncGenerator[DocumentPipeline, None]:
    config = settings.pipeline_config()

    engine = create_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        echo=settings.db_echo_sql,
    )
    weaviate_client = create_weaviate_client(settings)

    try:
        pipeline = DocumentPipeline(
            config=config,
            object_store=ObjectStore(region=settings.aws_region),
            textract=TextractService(region=settings.aws_region),
            embedder=EmbeddingGenerator(
                api_key=settings.openai_api_key,
                model=settings.embedding_model,
                dimensions=config.embedding_dimensions,
                max_retries=config.embedding_max_retries,
                retry_base_delay=config.embedding_retry_base_delay,
            ),
            vector_index=get_vector_index(settings, config.vector_index_name, client=weaviate_client),
            metadata_store=MetadataStore(
                create_session_factory(engine),
                documents_table=config.documents_table,
                chunks_table=config.chunks_table,
            ),
        )
        logger.info(
            "Pipeline ready | env=%s index=%s chunks_table=%s",
            config.environment, config.vector_index_name, config.chunks_table,
        )
        yield pipeline
    finally:
        weaviate_client.close()
        await engine.dispose()
