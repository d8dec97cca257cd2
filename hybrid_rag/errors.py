"""
Error taxonomy for the Hybrid Retrieval Engine
"""
from typing import Optional


class HybridRagError(Exception):
    """Base class for every error raised by hybrid_rag"""


class ConfigurationError(HybridRagError):
    """Invalid retriever or pipeline configuration, raised at construction time"""


class FilterParseError(HybridRagError):
    """Malformed filter expression text"""

    def __init__(self, message: str, text: str = "", position: Optional[int] = None):
        self.text = text
        self.position = position
        if position is not None:
            message = f"{message} (at position {position} in {text!r})"
        super().__init__(message)


class RetrievalIOError(HybridRagError):
    """Index/backend failure; the underlying exception is chained as __cause__"""


class EmbeddingError(HybridRagError):
    """Embedding collaborator failure"""


class TransformationError(HybridRagError):
    """Language model failure while transforming or expanding a query"""


class RetrievalPipelineError(HybridRagError):
    """A pipeline stage failed; `stage` names the stage that was running"""

    def __init__(self, stage, cause: BaseException):
        self.stage = stage
        self.cause = cause
        stage_name = getattr(stage, "value", stage)
        super().__init__(f"Retrieval pipeline failed at stage {stage_name}: {cause}")
