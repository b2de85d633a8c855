from docpipeline.vectorstore.base import IndexSchema, SearchHit, VectorDocument, VectorIndexBase
from docpipeline.vectorstore.factory import get_vector_index

__all__ = ["IndexSchema", "SearchHit", "VectorDocument", "VectorIndexBase", "get_vector_index"]
