"""Second-pass reranker adapter.

Rescores first-pass search hits against the query with the best backend
that is configured, in priority order:

1. **Cohere** ``/v1/rerank`` (multilingual cross-encoder) over ``httpx``.
2. **OpenAI** chat completion through the ``openai`` SDK, asked to return
   one relevance score per candidate.
3. **Keyword scorer** -- no network: ``0.7 * original score``
   ``+ 0.2 * query-term overlap with the content``
   ``+ 0.1 * query-term overlap with the title``.

A failed or unparseable API call degrades to the keyword scorer, so
:meth:`RerankerProvider.rerank` never raises.  When the reranker is
disabled the keyword scorer is used directly and no request is made.
"""

from __future__ import annotations

import re

import httpx
import openai
import structlog

from fieldkb.config.settings import Settings
from fieldkb.interfaces.reranker_provider import IRerankerProvider
from fieldkb.models.kb import RerankedResult, SearchResult
from fieldkb.utils.errors import RerankerError

logger = structlog.get_logger(logger_name=__name__)

COHERE_RERANK_URL = "https://api.cohere.ai/v1/rerank"

_ORIGINAL_WEIGHT = 0.7
_CONTENT_WEIGHT = 0.2
_TITLE_WEIGHT = 0.1
_MIN_TERM_LENGTH = 3
_MAX_DOCUMENT_CHARS = 2000

_SCORE_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")
_TERM_PATTERN = re.compile(r"\w+", re.UNICODE)

_OPENAI_SYSTEM_PROMPT = (
    "You score how relevant each document is to a user's question. "
    "Reply with only a JSON array of numbers between 0 and 1, one per "
    "document, in the order the documents are given."
)


def _query_terms(query: str) -> set[str]:
    return {t for t in _TERM_PATTERN.findall(query.lower()) if len(t) >= _MIN_TERM_LENGTH}


def _overlap(terms: set[str], text: str | None) -> float:
    if not terms or not text:
        return 0.0
    lowered = text.lower()
    return sum(1 for term in terms if term in lowered) / len(terms)


def _document_text(candidate: SearchResult) -> str:
    text = f"{candidate.title}\n{candidate.content}" if candidate.title else candidate.content
    return text[:_MAX_DOCUMENT_CHARS]


def parse_scores(text: str, expected: int) -> list[float] | None:
    """Pull *expected* scores out of free-form model output.

    Accepts ``"[0.9, 0.7]"`` as well as ``"Scores: 0.9, 0.7"``.  Returns
    ``None`` when fewer numbers than *expected* are found.
    """
    numbers = [float(match) for match in _SCORE_PATTERN.findall(text)]
    if len(numbers) < expected:
        return None
    return [max(0.0, min(1.0, n)) for n in numbers[:expected]]


class RerankerProvider(IRerankerProvider):
    """Reranker backed by Cohere, OpenAI or a local keyword scorer.

    Parameters
    ----------
    settings:
        Supplies the feature flag, API keys and model names.
    http_client:
        Optional shared ``httpx.AsyncClient``, used for the Cohere call and
        handed to the OpenAI SDK.  Tests inject one built on
        ``httpx.MockTransport``.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._enabled = settings.kb_reranker_enabled
        self._cohere_api_key = settings.cohere_api_key
        self._cohere_model = settings.cohere_rerank_model
        self._openai_api_key = settings.openai_api_key
        self._openai_model = settings.kb_reranker_model
        self._backends = settings.get_available_rerankers() if self._enabled else []
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)

        self._openai_client: openai.AsyncOpenAI | None = None
        if "openai" in self._backends:
            client_kwargs: dict = {"api_key": self._openai_api_key, "max_retries": 0}
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            if http_client is not None:
                client_kwargs["http_client"] = http_client
            self._openai_client = openai.AsyncOpenAI(**client_kwargs)

        logger.info(
            "reranker_configured",
            enabled=self._enabled,
            backend=self._backends[0] if self._backends else "keyword",
        )

    def is_available(self) -> bool:
        return bool(self._backends)

    def get_provider_name(self) -> str:
        return self._backends[0] if self._backends else "keyword"

    async def rerank(
        self,
        query: str,
        candidates: list[SearchResult],
        top_k: int = 5,
        min_score: float = 0.5,
    ) -> list[RerankedResult]:
        if not candidates:
            return []

        scores: list[float] | None = None
        if self._backends:
            try:
                if self._backends[0] == "cohere":
                    scores = await self._cohere_scores(query, candidates)
                else:
                    scores = await self._openai_scores(query, candidates)
            except (RerankerError, httpx.HTTPError, openai.OpenAIError, ValueError) as exc:
                logger.warning(
                    "reranker_api_failed",
                    backend=self._backends[0],
                    error=str(exc),
                    msg="Falling back to keyword reranking.",
                )

        if scores is None:
            scores = self._keyword_scores(query, candidates)

        reranked = [
            RerankedResult(
                **(
                    candidate.model_dump()
                    | {"score": score, "original_score": candidate.score, "rerank_score": score}
                )
            )
            for candidate, score in zip(candidates, scores, strict=True)
        ]
        reranked.sort(key=lambda r: r.rerank_score, reverse=True)
        results = [r for r in reranked if r.rerank_score >= min_score][:top_k]

        logger.debug(
            "reranker_complete",
            backend=self.get_provider_name(),
            candidates=len(candidates),
            results=len(results),
        )
        return results

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    async def _cohere_scores(self, query: str, candidates: list[SearchResult]) -> list[float]:
        response = await self._http_client.post(
            COHERE_RERANK_URL,
            headers={
                "Authorization": f"Bearer {self._cohere_api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self._cohere_model,
                "query": query,
                "documents": [_document_text(c) for c in candidates],
                "top_n": len(candidates),
            },
        )
        if response.status_code != 200:
            raise RerankerError(
                message=f"Cohere rerank error ({response.status_code}): {response.text}",
                provider_name="cohere",
            )

        scores = [0.0] * len(candidates)
        for item in response.json().get("results", []):
            index = item.get("index")
            if isinstance(index, int) and 0 <= index < len(candidates):
                scores[index] = float(item.get("relevance_score", 0.0))
        return scores

    async def _openai_scores(
        self, query: str, candidates: list[SearchResult]
    ) -> list[float] | None:
        if self._openai_client is None:
            return None

        documents = "\n\n".join(
            f"[{i + 1}] {_document_text(c)}" for i, c in enumerate(candidates)
        )
        response = await self._openai_client.chat.completions.create(
            model=self._openai_model,
            temperature=0,
            messages=[
                {"role": "system", "content": _OPENAI_SYSTEM_PROMPT},
                {"role": "user", "content": f"Question: {query}\n\nDocuments:\n{documents}"},
            ],
        )
        content = response.choices[0].message.content or ""
        scores = parse_scores(content, len(candidates))
        if scores is None:
            logger.warning("reranker_unparseable_scores", backend="openai", output=content[:200])
        return scores

    @staticmethod
    def _keyword_scores(query: str, candidates: list[SearchResult]) -> list[float]:
        terms = _query_terms(query)
        return [
            _ORIGINAL_WEIGHT * c.score
            + _CONTENT_WEIGHT * _overlap(terms, c.content)
            + _TITLE_WEIGHT * _overlap(terms, c.title)
            for c in candidates
        ]

    async def close(self) -> None:
        await self._http_client.aclose()
