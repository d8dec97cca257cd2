"""
Post-retrieval document processing
"""
from abc import ABC, abstractmethod
from typing import Iterable

from hybrid_rag.types import Document, Query


class DocumentPostProcessor(ABC):
    """Reorders, filters or rewrites retrieved documents"""

    @abstractmethod
    def process(self, query: Query, documents: list[Document]) -> list[Document]:
        pass


class DocumentPostProcessorChain(DocumentPostProcessor):
    """Applies processors in order, each one receiving the previous one's output"""

    def __init__(self, processors: Iterable[DocumentPostProcessor] = ()):
        self.processors = tuple(processors)

    def process(self, query: Query, documents: list[Document]) -> list[Document]:
        for processor in self.processors:
            documents = processor.process(query, documents)
        return documents

    def __len__(self):
        return len(self.processors)


class DeduplicationPostProcessor(DocumentPostProcessor):
    """Keeps the first occurrence of each document id"""

    def process(self, query: Query, documents: list[Document]) -> list[Document]:
        seen = set()
        unique = []
        for doc in documents:
            if doc.id in seen:
                continue
            seen.add(doc.id)
            unique.append(doc)
        return unique
