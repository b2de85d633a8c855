from docpipeline.observability.tracing import traced

__all__ = ["traced"]
