"""Article analyzers: OpenAI-backed judgments with a deterministic keyword fallback."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from pydantic import ValidationError

from app.config import settings
from app.models.article import AnalyzerJudgment, DisruptionLevel, TimeToImpact
from app.services.ingestion.errors import AnalyzerError

try:  # pragma: no cover - import guard for optional dependency
    from openai import APIError as OpenAIAPIError
    from openai import OpenAI
    from openai import OpenAIError as OpenAIBaseError
except Exception:  # pragma: no cover - openai not installed in some environments
    OpenAI = None  # type: ignore[assignment]
    OpenAIAPIError = Exception  # type: ignore[assignment]
    OpenAIBaseError = Exception  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

SYSTEM_PROMPT = (
    "You are an AI industry analyst. Judge whether a news article is about artificial "
    "intelligence, machine learning or AI companies, and respond with a single JSON object "
    "containing: category (startups|research|releases|tools|use-cases), confidence_score "
    "(0-100), summary (two sentences), is_relevant (bool), relevance_score (0-100), pros "
    "(list), cons (list), impact_score (0-10), development_impact, market_impact, "
    "disruption_level (low|moderate|high|revolutionary) and time_to_impact "
    "(immediate|short-term|medium-term|long-term)."
)

AI_KEYWORDS: tuple[str, ...] = (
    "artificial intelligence",
    " ai ",
    "ai-",
    "machine learning",
    "deep learning",
    "neural network",
    "llm",
    "language model",
    "generative",
    "chatgpt",
    "openai",
    "anthropic",
    "gpt",
    "claude",
    "gemini",
    "computer vision",
    "robotics",
    "automation",
)


class ArticleAnalyzer(Protocol):
    """Opaque judgment provider for a single article."""

    def analyze(self, title: str, body: str) -> AnalyzerJudgment:
        ...


class KeywordArticleAnalyzer(ArticleAnalyzer):
    """Deterministic analyzer used offline and whenever the model is unavailable."""

    def analyze(self, title: str, body: str) -> AnalyzerJudgment:
        text = f" {title} {body} ".lower()
        relevance = _relevance(text)
        return AnalyzerJudgment(
            category=categorize_by_title(title),
            confidence_score=65.0,
            summary=body.strip()[:280] or title,
            is_relevant=relevance >= 60,
            relevance_score=relevance,
            pros=_pros(text),
            cons=_cons(text),
            impact_score=impact_score(text),
            development_impact="Standard AI development news with moderate relevance.",
            market_impact="Minor impact on AI market trends.",
            disruption_level=disruption_level(text),
            time_to_impact=TimeToImpact.SHORT_TERM,
        )


class OpenAIChatClient(Protocol):
    """Minimal contract for OpenAI chat completions."""

    def generate(self, *, system_prompt: str, user_prompt: str, model: str, temperature: float) -> str:
        ...


class OpenAICompletionsClient(OpenAIChatClient):
    """Thin wrapper around the official OpenAI chat completions API in JSON mode."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required to analyze in online mode.")
        if OpenAI is None:  # pragma: no cover - import guard
            raise ImportError("openai package is not installed.")
        self._client = OpenAI(api_key=api_key)

    def generate(self, *, system_prompt: str, user_prompt: str, model: str, temperature: float) -> str:
        response = self._client.chat.completions.create(
            model=model,
            temperature=temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AnalyzerError("OpenAI response did not include text output.", code="502_OPENAI_UPSTREAM")
        return content.strip()


class OpenAIArticleAnalyzer(ArticleAnalyzer):
    """Asks the model for a structured judgment and clamps every field into range."""

    def __init__(
        self,
        client: OpenAIChatClient,
        *,
        model: str | None = None,
        temperature: float | None = None,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        self._client = client
        self._model = model or settings.analyzer_model
        self._temperature = settings.analyzer_temperature if temperature is None else temperature
        self._retry_attempts = retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds

    def analyze(self, title: str, body: str) -> AnalyzerJudgment:
        user_prompt = f"Title: {title}\n\nContent: {body[:4000]}"

        def _invoke() -> AnalyzerJudgment:
            try:
                raw = self._client.generate(
                    system_prompt=SYSTEM_PROMPT,
                    user_prompt=user_prompt,
                    model=self._model,
                    temperature=self._temperature,
                )
            except AnalyzerError:
                raise
            except OpenAIAPIError as exc:  # pragma: no cover - depends on SDK
                code = "429_RATE_LIMIT" if getattr(exc, "status_code", 500) == 429 else "502_OPENAI_UPSTREAM"
                raise AnalyzerError(f"OpenAI request failed: {exc}", code=code) from exc
            except OpenAIBaseError as exc:  # pragma: no cover - depends on SDK
                raise AnalyzerError(f"OpenAI request failed: {exc}", code="502_OPENAI_UPSTREAM") from exc
            try:
                payload = parse_json_payload(raw)
            except ValueError as exc:
                logger.error("analyzer.parse_error", extra={"title": title[:120]})
                raise AnalyzerError("Model response was not valid JSON.", code="502_OPENAI_UPSTREAM") from exc
            try:
                return judgment_from_payload(payload)
            except ValidationError as exc:
                logger.error("analyzer.invalid_payload", extra={"title": title[:120], "errors": exc.error_count()})
                raise AnalyzerError("Model response did not match the judgment schema.", code="502_OPENAI_UPSTREAM") from exc

        return self._execute_with_retry(_invoke)

    def _execute_with_retry(self, func: Callable[[], _T]) -> _T:
        delay = self._retry_backoff_seconds
        for attempt in range(1, self._retry_attempts + 1):
            try:
                return func()
            except AnalyzerError as exc:
                logger.warning("analyzer.retry", extra={"attempt": attempt, "code": exc.code})
                if attempt == self._retry_attempts or exc.code != "429_RATE_LIMIT":
                    raise
                time.sleep(delay)
                delay *= 2
        raise AnalyzerError("Analyzer retries exhausted.", code="502_OPENAI_UPSTREAM")


def build_article_analyzer() -> ArticleAnalyzer:
    """OpenAI analyzer when a key is configured and the mode allows it, keyword otherwise."""
    if settings.analyzer_mode.lower() == "openai" and settings.openai_api_key:
        try:
            client = OpenAICompletionsClient(settings.openai_api_key)
        except ImportError:
            logger.warning("analyzer.openai_unavailable", extra={"fallback": "keyword"})
        else:
            logger.info("analyzer.initialized", extra={"backend": "openai", "model": settings.analyzer_model})
            return OpenAIArticleAnalyzer(client)
    logger.info("analyzer.initialized", extra={"backend": "keyword"})
    return KeywordArticleAnalyzer()


def parse_json_payload(raw_text: str) -> dict[str, Any]:
    """Best-effort JSON decoding that tolerates code fences or prose."""
    candidate = raw_text.strip()
    if candidate.startswith("```"):
        candidate = "\n".join(
            line for line in candidate.splitlines() if not line.strip().startswith("```")
        ).strip()
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end > start:
        return json.loads(candidate[start : end + 1])
    raise ValueError("Response did not contain JSON object.")


def judgment_from_payload(payload: dict[str, Any]) -> AnalyzerJudgment:
    """Accept camelCase or snake_case keys; validators clamp out-of-range values."""
    aliases = {
        "confidenceScore": "confidence_score",
        "isRelevant": "is_relevant",
        "relevanceScore": "relevance_score",
        "impactScore": "impact_score",
        "developmentImpact": "development_impact",
        "marketImpact": "market_impact",
        "disruptionLevel": "disruption_level",
        "timeToImpact": "time_to_impact",
    }
    fields = set(AnalyzerJudgment.model_fields)
    normalized: dict[str, Any] = {}
    for key, value in payload.items():
        name = aliases.get(key, key)
        if name in fields and value is not None:
            normalized[name] = value
    return AnalyzerJudgment(**normalized)


def categorize_by_title(title: str) -> str:
    lowered = title.lower()
    if any(word in lowered for word in ("startup", "funding", "investment", "venture")):
        return "startups"
    if any(word in lowered for word in ("research", "study", "paper", "journal")):
        return "research"
    if any(word in lowered for word in ("release", "launch", "announce", "new")):
        return "releases"
    if any(word in lowered for word in ("tool", "platform", "software", "framework")):
        return "tools"
    return "use-cases"


def impact_score(text: str) -> float:
    score = 3.0
    if "breakthrough" in text or "revolutionary" in text:
        score += 2.0
    if "breakthrough" in text or "milestone" in text:
        score += 1.5
    if any(word in text for word in ("first", "new", "launch")):
        score += 1.0
    if "billion" in text or "million" in text:
        score += 1.0
    return max(1.0, min(10.0, score))


def disruption_level(text: str) -> DisruptionLevel:
    if any(word in text for word in ("revolutionary", "breakthrough", "game-changing")):
        return DisruptionLevel.REVOLUTIONARY
    if any(word in text for word in ("significant", "major", "important")):
        return DisruptionLevel.HIGH
    if any(word in text for word in ("incremental", "improvement", "update")):
        return DisruptionLevel.LOW
    return DisruptionLevel.MODERATE


def _relevance(text: str) -> float:
    hits = sum(1 for keyword in AI_KEYWORDS if keyword in text)
    return float(min(100, 45 + hits * 15)) if hits else 20.0


def _pros(text: str) -> list[str]:
    pros: list[str] = []
    if "efficient" in text or "faster" in text:
        pros.append("Improved efficiency and speed")
    if "accuracy" in text or "precise" in text or "better" in text:
        pros.append("Enhanced accuracy and performance")
    if "cost" in text or "cheaper" in text or "affordable" in text:
        pros.append("Cost reduction and accessibility")
    if "innovation" in text or "novel" in text or "creative" in text:
        pros.append("Drives innovation and creativity")
    return pros or ["Advances AI capabilities"]


def _cons(text: str) -> list[str]:
    cons: list[str] = []
    if "privacy" in text or "security" in text:
        cons.append("Potential privacy and security concerns")
    if "job" in text or "employment" in text or "replace" in text:
        cons.append("May impact employment in certain sectors")
    if "bias" in text or "ethical" in text:
        cons.append("Ethical considerations and bias concerns")
    if "regulation" in text or "oversight" in text:
        cons.append("Regulatory challenges and oversight needs")
    return cons or ["Requires careful implementation"]
