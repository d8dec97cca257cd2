"""
Tests for query transformation, expansion, augmentation and document post-processing
"""
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage

from hybrid_rag.augmenters import DEFAULT_EMPTY_CONTEXT_TEMPLATE, ContextualQueryAugmenter
from hybrid_rag.errors import ConfigurationError, TransformationError
from hybrid_rag.expanders import MultiQueryExpander
from hybrid_rag.postprocessors import (
    DeduplicationPostProcessor,
    DocumentPostProcessor,
    DocumentPostProcessorChain,
)
from hybrid_rag.rerank import RerankPostProcessor
from hybrid_rag.transformers import HyDeTransformer
from hybrid_rag.types import Document, Query


def fake_llm(content=None, error=None):
    llm = MagicMock()
    if error is not None:
        llm.invoke.side_effect = error
    else:
        llm.invoke.return_value = AIMessage(content=content)
    return llm


def sent_prompt(llm) -> str:
    messages = llm.invoke.call_args.args[0]
    return messages[-1].content


def docs(*ids):
    return [Document(id=i, text=f"text {i}", score=1.0) for i in ids]


class TestHyDeTransformer:
    """Hypothetical document generation"""

    def test_replaces_text(self):
        llm = fake_llm("Quasars are active galactic nuclei.")
        query = Query("What is a quasar?", context={"tenant": "a"})

        result = HyDeTransformer(llm).transform(query)

        assert result.text == "Quasars are active galactic nuclei."
        assert result.context == {"tenant": "a"}
        assert "Question: What is a quasar?" in sent_prompt(llm)

    def test_blank_result_returns_input(self):
        query = Query("What is a quasar?")

        assert HyDeTransformer(fake_llm("   ")).transform(query) is query

    def test_model_failure(self):
        transformer = HyDeTransformer(fake_llm(error=RuntimeError("connection refused")))

        with pytest.raises(TransformationError):
            transformer.transform(Query("q"))

    def test_template_requires_query_placeholder(self):
        with pytest.raises(ConfigurationError):
            HyDeTransformer(fake_llm("x"), prompt_template="Write a passage about {topic}")

    def test_custom_template(self):
        llm = fake_llm("passage")

        HyDeTransformer(llm, prompt_template="Answer briefly: {query}").transform(Query("why?"))

        assert sent_prompt(llm) == "Answer briefly: why?"


class TestMultiQueryExpander:
    """Query variants from the language model"""

    def test_expands(self):
        llm = fake_llm("first variant\nsecond variant\nthird variant")
        query = Query("original", context={"k": "v"})

        queries = MultiQueryExpander(llm).expand(query)

        assert [q.text for q in queries] == ["first variant", "second variant", "third variant"]
        assert all(q.context == {"k": "v"} for q in queries)
        assert "generate 3 different versions" in sent_prompt(llm)

    def test_include_original(self):
        llm = fake_llm("one\ntwo")
        query = Query("original")

        queries = MultiQueryExpander(llm, include_original=True, number_of_queries=2).expand(query)

        assert queries[0] is query
        assert [q.text for q in queries[1:]] == ["one", "two"]

    @pytest.mark.parametrize("content", ["", "only one line", "a\nb\nc\nd"])
    def test_malformed_output_returns_input(self, content):
        query = Query("original")

        assert MultiQueryExpander(fake_llm(content)).expand(query) == [query]

    def test_invalid_number_of_queries(self):
        with pytest.raises(ConfigurationError):
            MultiQueryExpander(fake_llm("x"), number_of_queries=0)

    def test_model_failure(self):
        with pytest.raises(TransformationError):
            MultiQueryExpander(fake_llm(error=TimeoutError())).expand(Query("q"))


class TestContextualQueryAugmenter:
    """Context prompt assembly"""

    def test_with_documents(self):
        result = ContextualQueryAugmenter().augment(Query("What is RRF?"), docs("a", "b"))

        assert "text a\ntext b" in result.text
        assert "Query: What is RRF?" in result.text

    def test_empty_context(self):
        result = ContextualQueryAugmenter().augment(Query("What is RRF?"), [])
        assert result.text == DEFAULT_EMPTY_CONTEXT_TEMPLATE

    def test_allow_empty_context(self):
        query = Query("What is RRF?")
        assert ContextualQueryAugmenter(allow_empty_context=True).augment(query, []) is query

    def test_template_placeholders(self):
        with pytest.raises(ConfigurationError):
            ContextualQueryAugmenter(prompt_template="Only {query}")


class AppendProcessor(DocumentPostProcessor):
    def __init__(self, doc_id):
        self.doc_id = doc_id

    def process(self, query, documents):
        return documents + docs(self.doc_id)


class ReverseProcessor(DocumentPostProcessor):
    def process(self, query, documents):
        return list(reversed(documents))


class TestPostProcessors:
    """Post-processing chain"""

    def test_chain_is_a_fold(self):
        chain = DocumentPostProcessorChain([AppendProcessor("x"), ReverseProcessor(), AppendProcessor("y")])

        result = chain.process(Query("q"), docs("a", "b"))

        assert [d.id for d in result] == ["x", "b", "a", "y"]

    def test_empty_chain_is_identity(self):
        documents = docs("a", "b")
        assert DocumentPostProcessorChain().process(Query("q"), documents) is documents

    def test_deduplication_keeps_first(self):
        documents = docs("a", "b") + [Document(id="a", text="again")]

        result = DeduplicationPostProcessor().process(Query("q"), documents)

        assert [d.text for d in result] == ["text a", "text b"]


class TestRerankPostProcessor:
    """CrossEncoder reranking"""

    def model(self, scores):
        model = MagicMock()
        model.predict.return_value = scores
        return model

    def test_reorders_and_filters(self):
        model = self.model([0.1, 0.9, 0.5])
        reranker = RerankPostProcessor(min_score=0.2, model=model, model_name="test-model")

        result = reranker.process(Query("q"), docs("a", "b", "c"))

        assert [d.id for d in result] == ["b", "c"]
        assert result[0].metadata["rerank_score"] == pytest.approx(1.0)
        assert result[1].metadata["rerank_score"] == pytest.approx(0.5)
        assert result[0].metadata["pre_rerank_score"] == 1.0
        model.predict.assert_called_once_with([("q", "text a"), ("q", "text b"), ("q", "text c")])

    def test_single_document_normalized(self):
        reranker = RerankPostProcessor(min_score=0.5, model=self.model([-4.0]), model_name="test-model")

        result = reranker.process(Query("q"), docs("a"))

        assert [d.id for d in result] == ["a"]
        assert result[0].metadata["rerank_score"] == pytest.approx(1.0)

    def test_tied_scores_normalized(self):
        reranker = RerankPostProcessor(min_score=0.5, model=self.model([2.0, 2.0]), model_name="test-model")

        result = reranker.process(Query("q"), docs("a", "b"))

        assert [d.id for d in result] == ["a", "b"]
        assert all(d.metadata["rerank_score"] == pytest.approx(1.0) for d in result)

    def test_top_n(self):
        reranker = RerankPostProcessor(top_n=1, model=self.model([0.3, 0.7]), model_name="test-model")
        assert [d.id for d in reranker.process(Query("q"), docs("a", "b"))] == ["b"]

    def test_raw_scores(self):
        reranker = RerankPostProcessor(min_score=-1.0, model=self.model([-2.0, 3.0]),
                                       model_name="test-model", normalize_scores=False)

        result = reranker.process(Query("q"), docs("a", "b"))

        assert [d.id for d in result] == ["b"]
        assert result[0].score == 3.0

    def test_input_documents_untouched(self):
        documents = docs("a")
        RerankPostProcessor(model=self.model([0.4]), model_name="test-model").process(Query("q"), documents)
        assert "rerank_score" not in documents[0].metadata

    def test_model_error_propagates(self):
        model = MagicMock()
        model.predict.side_effect = RuntimeError("oom")

        with pytest.raises(RuntimeError):
            RerankPostProcessor(model=model, model_name="test-model").process(Query("q"), docs("a"))

    def test_empty(self):
        model = self.model([])
        assert RerankPostProcessor(model=model, model_name="test-model").process(Query("q"), []) == []
        model.predict.assert_not_called()
