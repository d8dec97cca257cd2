"""
Retrieval-augmented chat advisors
Runs transform -> expand -> retrieve -> post-process -> augment around a chat model call
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage

from hybrid_rag.augmenters import ContextualQueryAugmenter, QueryAugmenter
from hybrid_rag.config import get_settings
from hybrid_rag.errors import ConfigurationError, RetrievalPipelineError
from hybrid_rag.expanders import QueryExpander
from hybrid_rag.llm import message_text
from hybrid_rag.postprocessors import DocumentPostProcessor, DocumentPostProcessorChain
from hybrid_rag.retriever import DocumentRetriever, HybridDocumentRetriever
from hybrid_rag.transformers import HyDeTransformer, QueryTransformer
from hybrid_rag.types import DOCUMENT_CONTEXT_KEY, Document, Query

logger = logging.getLogger("hybrid_rag.advisors")


class PipelineStage(str, Enum):
    RECEIVED = "RECEIVED"
    TRANSFORMED = "TRANSFORMED"
    EXPANDED = "EXPANDED"
    RETRIEVED = "RETRIEVED"
    POST_PROCESSED = "POST_PROCESSED"
    AUGMENTED = "AUGMENTED"
    FORWARDED = "FORWARDED"


@dataclass(frozen=True)
class AdvisedRequest:
    """Chat request passing through an advisor: the prompt messages plus a context map"""
    messages: tuple[BaseMessage, ...]
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "context", MappingProxyType(dict(self.context or {})))

    def _last_user_index(self) -> Optional[int]:
        for idx in range(len(self.messages) - 1, -1, -1):
            if isinstance(self.messages[idx], HumanMessage):
                return idx
        return None

    @property
    def user_text(self) -> str:
        idx = self._last_user_index()
        if idx is None:
            raise ValueError("request has no user message")
        return message_text(self.messages[idx].content)

    def augment_user_message(self, text: str) -> "AdvisedRequest":
        """Copy with the last user message replaced by `text` (appended when there is none)"""
        messages = list(self.messages)
        idx = self._last_user_index()
        if idx is None:
            messages.append(HumanMessage(content=text))
        else:
            messages[idx] = HumanMessage(content=text)
        return replace(self, messages=tuple(messages))

    def mutate(self, **changes) -> "AdvisedRequest":
        return replace(self, **changes)


@dataclass
class ChatResponse:
    generation: Optional[BaseMessage] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AdvisedResponse:
    chat_response: Optional[ChatResponse]
    context: Mapping[str, Any] = field(default_factory=dict)


CallNext = Callable[[AdvisedRequest], AdvisedResponse]


def chat_model_call(llm: BaseChatModel) -> CallNext:
    """call_next that sends the advised messages to a LangChain chat model"""
    def _call(request: AdvisedRequest) -> AdvisedResponse:
        message = llm.invoke(list(request.messages))
        return AdvisedResponse(chat_response=ChatResponse(generation=message), context=request.context)
    return _call


def _run_stage(stage: PipelineStage, fn, *args):
    try:
        return fn(*args)
    except RetrievalPipelineError:
        raise
    except Exception as e:
        raise RetrievalPipelineError(stage, e) from e


class RetrievalAdvisor:
    """
    Base retrieval advisor

    Stage lists are fixed at construction. Every request works on its own copy of
    the context; the caller's map is never modified.
    """

    def __init__(
        self,
        retriever: DocumentRetriever,
        query_transformers: Iterable[QueryTransformer] = (),
        query_expander: Optional[QueryExpander] = None,
        document_post_processors: Iterable[DocumentPostProcessor] = (),
        query_augmenter: Optional[QueryAugmenter] = None,
        order: int = 0,
        max_workers: Optional[int] = None,
    ):
        if retriever is None:
            raise ConfigurationError("retriever cannot be None")
        self.retriever = retriever
        self.query_transformers = tuple(query_transformers or ())
        self.query_expander = query_expander
        self.post_processor_chain = DocumentPostProcessorChain(document_post_processors or ())
        self.query_augmenter = query_augmenter or ContextualQueryAugmenter()
        self.order = order
        self.max_workers = max_workers or get_settings().retrieval_max_workers

    @property
    def name(self) -> str:
        return type(self).__name__

    def _transform(self, query: Query) -> Query:
        for transformer in self.query_transformers:
            query = transformer.transform(query)
        return query

    def _expand(self, query: Query) -> list[Query]:
        if self.query_expander is None:
            return [query]
        queries = self.query_expander.expand(query)
        if not queries:
            raise ValueError("query expander returned no queries")
        return list(queries)

    def _retrieve_all(self, queries: list[Query]) -> list[Document]:
        """Retrieve every query, concatenating results in query order"""
        if len(queries) == 1:
            return list(self.retriever.retrieve(queries[0]))

        with ThreadPoolExecutor(max_workers=min(len(queries), self.max_workers)) as executor:
            futures = [executor.submit(self.retriever.retrieve, query) for query in queries]
            try:
                results = [future.result() for future in futures]
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        return [doc for docs in results for doc in docs]

    def before(self, request: AdvisedRequest) -> AdvisedRequest:
        context = dict(request.context)
        original = Query(text=request.user_text, history=request.messages, context=context)
        logger.debug(f"[ADVISOR] {self.name} {PipelineStage.RECEIVED.value}: {original.text[:100]}")

        transformed = _run_stage(PipelineStage.TRANSFORMED, self._transform, original)
        expanded = _run_stage(PipelineStage.EXPANDED, self._expand, transformed)
        retrieved = _run_stage(PipelineStage.RETRIEVED, self._retrieve_all, expanded)
        documents = _run_stage(
            PipelineStage.POST_PROCESSED, self.post_processor_chain.process, original, retrieved
        )
        logger.info(
            f"🔍 [ADVISOR] {len(expanded)} queries -> {len(retrieved)} retrieved -> {len(documents)} documents"
        )

        context[DOCUMENT_CONTEXT_KEY] = documents
        augmented = _run_stage(PipelineStage.AUGMENTED, self.query_augmenter.augment, original, documents)

        return request.augment_user_message(augmented.text).mutate(context=context)

    def after(self, response: AdvisedResponse) -> AdvisedResponse:
        if response.chat_response is None:
            chat_response = ChatResponse()
        else:
            chat_response = ChatResponse(
                generation=response.chat_response.generation,
                metadata=dict(response.chat_response.metadata),
            )
        chat_response.metadata[DOCUMENT_CONTEXT_KEY] = response.context.get(DOCUMENT_CONTEXT_KEY)
        return AdvisedResponse(chat_response=chat_response, context=response.context)

    def advise(self, request: AdvisedRequest, call_next: CallNext) -> AdvisedResponse:
        advised = self.before(request)
        logger.debug(f"[ADVISOR] {self.name} {PipelineStage.FORWARDED.value}")
        return self.after(call_next(advised))


class MultiQueryRetrieverAdvisor(RetrievalAdvisor):
    """Expands the query, retrieves each variant with any DocumentRetriever and augments"""

    def __init__(
        self,
        retriever: DocumentRetriever,
        query_expander: Optional[QueryExpander] = None,
        query_augmenter: Optional[QueryAugmenter] = None,
        order: int = 0,
        max_workers: Optional[int] = None,
    ):
        super().__init__(
            retriever=retriever,
            query_expander=query_expander,
            query_augmenter=query_augmenter,
            order=order,
            max_workers=max_workers,
        )


class HybridSearchAdvisor(RetrievalAdvisor):
    """
    Full pipeline over a HybridDocumentRetriever

    hyde_transformer runs after the configured transformers and
    rerank_post_processor after the configured post-processors.
    """

    def __init__(
        self,
        retriever: HybridDocumentRetriever,
        query_transformers: Iterable[QueryTransformer] = (),
        query_expander: Optional[QueryExpander] = None,
        document_post_processors: Iterable[DocumentPostProcessor] = (),
        query_augmenter: Optional[QueryAugmenter] = None,
        hyde_transformer: Optional[HyDeTransformer] = None,
        rerank_post_processor: Optional[DocumentPostProcessor] = None,
        order: int = 0,
        max_workers: Optional[int] = None,
    ):
        if not isinstance(retriever, HybridDocumentRetriever):
            raise ConfigurationError("HybridSearchAdvisor requires a HybridDocumentRetriever")

        transformers = list(query_transformers or ())
        if hyde_transformer is not None:
            transformers.append(hyde_transformer)

        post_processors = list(document_post_processors or ())
        if rerank_post_processor is not None:
            post_processors.append(rerank_post_processor)

        super().__init__(
            retriever=retriever,
            query_transformers=transformers,
            query_expander=query_expander,
            document_post_processors=post_processors,
            query_augmenter=query_augmenter,
            order=order,
            max_workers=max_workers,
        )
