"""RAG query orchestration.

A query runs strictly in order, with no backtracking::

    EmbedQuery -> Retrieve -> BudgetContext -> Generate -> Audit

Store scope is resolved up front, so a bad explicit store selection fails
before any remote call. Every query is audited, including failed ones.
"""

import getpass
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.prompts import PromptTemplate

from ..config import KnowledgeBaseConfig
from ..errors import ConfigurationError, ConnectivityError, KnowledgeBaseError, PersistenceError
from ..logging_config import correlation_scope, get_logger
from .audit import AuditLog, AuditRecord
from .embedder import EmbeddingClient, EmbeddingFailure
from .search import SearchResult, search_stores
from .vectorstore import EmbeddingStore, StoreRepository

logger = get_logger(__name__)

NO_CONTEXT_MARKER = "No relevant context was found in the knowledge base."


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough token count (~4 chars per token)."""
    return math.ceil(len(text) / chars_per_token)


# =============================================================================
# Context budgeting
# =============================================================================

@dataclass
class ContextBlock:
    result: SearchResult
    text: str
    tokens: int


def format_result(position: int, result: SearchResult) -> str:
    """Format one retrieved chunk for the prompt."""
    header = f" [{result.section_header}]" if result.section_header else ""
    return (
        f"--- {position}. {result.store_name}:{result.source_path}{header} "
        f"(score: {result.score:.3f}) ---\n{result.content}"
    )


def budget_context(
    results: Sequence[SearchResult],
    max_tokens: int,
    estimate: Callable[[str], int] = estimate_tokens,
) -> list[ContextBlock]:
    """Greedily take ranked results until the next one would not fit.

    Results must already be sorted by score descending. Accepting stops at
    the first result that would push the total over ``max_tokens``; later,
    smaller results are not used to fill the gap.
    """
    accepted: list[ContextBlock] = []
    total = 0
    for position, result in enumerate(results, 1):
        text = format_result(position, result)
        tokens = estimate(text)
        if total + tokens > max_tokens:
            logger.debug(
                "Context budget reached: %s/%s tokens used, %s results left out",
                total, max_tokens, len(results) - position + 1,
            )
            break
        accepted.append(ContextBlock(result=result, text=text, tokens=tokens))
        total += tokens
    return accepted


def render_context(blocks: Sequence[ContextBlock]) -> str:
    if not blocks:
        return NO_CONTEXT_MARKER
    return "\n\n".join(block.text for block in blocks)


# =============================================================================
# Answer sources
# =============================================================================

def _content_text(content) -> str:
    """Extract plain text from a message's content (str or content blocks)."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class AnswerSource(ABC):
    """Produces an answer as an ordered, finite sequence of text fragments.

    Implementations differ only in delivery; joining the fragments gives
    the same answer for the same prompt.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self.llm = llm

    @abstractmethod
    def fragments(self, prompt: str) -> Iterator[str]:
        ...


class BlockingAnswer(AnswerSource):
    """Waits for the complete answer and yields it as one fragment."""

    def fragments(self, prompt: str) -> Iterator[str]:
        message = self.llm.invoke(prompt)
        text = _content_text(message.content)
        if text:
            yield text


class StreamingAnswer(AnswerSource):
    """Yields fragments as the model produces them."""

    def fragments(self, prompt: str) -> Iterator[str]:
        for chunk in self.llm.stream(prompt):
            text = _content_text(chunk.content)
            if text:
                yield text


# =============================================================================
# Orchestrator
# =============================================================================

@dataclass
class QueryResult:
    """Outcome of one RAG query."""

    correlation_id: str
    question: str
    answer: Optional[str] = None
    results: list[SearchResult] = field(default_factory=list)
    context_blocks: list[ContextBlock] = field(default_factory=list)
    context: str = ""
    stores_searched: list[str] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.answer is not None

    @property
    def context_results(self) -> list[SearchResult]:
        """The results that made it into the prompt context."""
        return [block.result for block in self.context_blocks]

    @property
    def top_score(self) -> Optional[float]:
        return self.results[0].score if self.results else None


class RagOrchestrator:
    """Answers questions from the knowledge base. Reads stores, never writes them.

    Args:
        config: Application configuration
        embedder: Embedding client (must use the model the stores were built with)
        repository: Store repository to read from
        answer_source: Blocking or streaming generation
        audit_log: Where query records are appended
    """

    def __init__(
        self,
        config: KnowledgeBaseConfig,
        embedder: EmbeddingClient,
        repository: StoreRepository,
        answer_source: AnswerSource,
        audit_log: AuditLog,
    ) -> None:
        self.config = config
        self.embedder = embedder
        self.repository = repository
        self.answer_source = answer_source
        self.audit_log = audit_log

        self.prompt = PromptTemplate.from_template(config.retrieval.prompt_template)
        if set(self.prompt.input_variables) != {"context", "question"}:
            raise ConfigurationError(
                "prompt_template must use exactly the {context} and {question} placeholders, "
                f"found {sorted(self.prompt.input_variables)}"
            )

    # -------------------------------------------------------------------------
    # Scope
    # -------------------------------------------------------------------------

    def resolve_stores(self, store_names: Optional[Sequence[str]] = None) -> tuple[list[EmbeddingStore], bool]:
        """Load the stores a query will search.

        With explicit names, a missing or corrupt store is fatal. Without
        names, every available store is used and unusable ones are skipped.

        Returns:
            (stores, explicit)

        Raises:
            PersistenceError: An explicitly named store is missing or corrupt.
        """
        explicit = bool(store_names)
        names = list(store_names) if explicit else self.repository.list_stores()

        stores = []
        for name in names:
            try:
                store = self.repository.load(name)
            except PersistenceError:
                if explicit:
                    raise
                logger.warning("Store %r is unreadable, excluding it from the search", name)
                continue
            if store is None:
                if explicit:
                    raise PersistenceError(f"Store {name!r} does not exist")
                continue
            stores.append(store)
        return stores, explicit

    def _check_dimensions(
        self,
        stores: list[EmbeddingStore],
        query_vector: list[float],
        explicit: bool,
    ) -> list[EmbeddingStore]:
        usable = []
        for store in stores:
            if store.model_name != self.embedder.model_name:
                logger.warning(
                    "Store %r was built with %s but queries use %s",
                    store.store_name, store.model_name, self.embedder.model_name,
                )
            if store.entries and store.dimensions != len(query_vector):
                message = (
                    f"Store {store.store_name!r} holds {store.dimensions}-dimensional vectors "
                    f"but the query vector has {len(query_vector)}"
                )
                if explicit:
                    raise ConfigurationError(message)
                logger.warning("%s; excluding it from the search", message)
                continue
            usable.append(store)
        return usable

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def ask(
        self,
        question: str,
        stores: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
        actor: Optional[str] = None,
        on_fragment: Optional[Callable[[str], None]] = None,
        correlation_id: Optional[str] = None,
    ) -> QueryResult:
        """Answer a question grounded in the selected stores.

        Args:
            question: Natural-language question (passed verbatim to the prompt)
            stores: Store names to search (default: all available stores)
            top_k: Maximum retrieved chunks (default from config)
            threshold: Minimum similarity (default from config)
            actor: Who asked (default: current login name)
            on_fragment: Called with each answer fragment as it arrives
            correlation_id: Id for logs and audit (generated if None)

        Returns:
            QueryResult; ``error`` is set when embedding or generation failed.

        Raises:
            ConfigurationError: Invalid top_k/threshold, or an explicit store
                with the wrong dimensions.
            PersistenceError: An explicitly named store is missing or corrupt.
        """
        retrieval = self.config.retrieval
        top_k = retrieval.top_k if top_k is None else top_k
        threshold = retrieval.threshold if threshold is None else threshold
        if top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {top_k}")
        if not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(f"threshold must be within [0, 1], got {threshold}")

        with correlation_scope(correlation_id) as cid:
            start = time.perf_counter()
            result = QueryResult(correlation_id=cid, question=question)
            try:
                self._run(result, stores, top_k, threshold, on_fragment)
            except KnowledgeBaseError as e:
                result.error = str(e)
                raise
            finally:
                result.duration_ms = int((time.perf_counter() - start) * 1000)
                self._audit(result, actor or _current_user())
            return result

    def _run(
        self,
        result: QueryResult,
        store_names: Optional[Sequence[str]],
        top_k: int,
        threshold: float,
        on_fragment: Optional[Callable[[str], None]],
    ) -> None:
        retrieval = self.config.retrieval
        loaded, explicit = self.resolve_stores(store_names)
        result.stores_searched = [s.store_name for s in loaded]

        # EmbedQuery
        query_vector = self.embedder.embed(result.question)
        if isinstance(query_vector, EmbeddingFailure):
            result.error = f"Query embedding failed: {query_vector.message}"
            logger.error(result.error)
            return

        # Retrieve
        usable = self._check_dimensions(loaded, query_vector, explicit)
        result.stores_searched = [s.store_name for s in usable]
        result.results = search_stores(query_vector, usable, top_k=top_k, threshold=threshold)
        logger.info(
            "Retrieved %s results from %s (top score %s)",
            len(result.results), result.stores_searched or "no stores",
            f"{result.top_score:.3f}" if result.top_score is not None else "n/a",
        )

        # BudgetContext
        result.context_blocks = budget_context(
            result.results,
            retrieval.context_budget_tokens,
            estimate=lambda text: estimate_tokens(text, retrieval.chars_per_token),
        )
        result.context = render_context(result.context_blocks)

        # Generate
        prompt = self.prompt.format(context=result.context, question=result.question)
        self._generate(result, prompt, on_fragment)

    def _generate(
        self,
        result: QueryResult,
        prompt: str,
        on_fragment: Optional[Callable[[str], None]],
    ) -> None:
        model = self.config.endpoint.chat_model
        logger.info("Generate request (Model=%s, PromptLength=%s)", model, len(prompt))
        start = time.perf_counter()
        parts: list[str] = []
        try:
            for fragment in self.answer_source.fragments(prompt):
                parts.append(fragment)
                if on_fragment:
                    on_fragment(fragment)
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            error = ConnectivityError(f"Generation failed after {len(parts)} fragments: {e}")
            result.error = str(error)
            logger.error("Generate failed (Model=%s, Latency=%.0fms): %s", model, latency_ms, e)
            result.answer = "".join(parts)
            return

        result.answer = "".join(parts)
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Generate complete (Model=%s, Latency=%.0fms, Fragments=%s, AnswerLength=%s)",
            model, latency_ms, len(parts), len(result.answer),
        )

    def _audit(self, result: QueryResult, actor: str) -> None:
        record = AuditRecord(
            correlation_id=result.correlation_id,
            question=result.question,
            actor=actor,
            stores_searched=result.stores_searched,
            result_count=len(result.results),
            top_score=result.top_score,
            model=self.config.endpoint.chat_model,
            duration_ms=result.duration_ms,
            answer_length=len(result.answer or ""),
            error=result.error,
        )
        try:
            self.audit_log.append(record)
        except PersistenceError as e:
            logger.error("Audit record for query %s was not written: %s", result.correlation_id, e)


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
