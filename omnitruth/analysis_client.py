"""
Client for the AI analysis collaborator.

Talks to Gemini through its OpenAI-compatible endpoint with ``AsyncOpenAI``.
The ``analyze_*``, ``fetch_*``, ``perform_*`` and ``generate_*`` calls
never raise: a failed, timed-out or unparseable response degrades to a
defined fallback (a neutral analysis result, an empty post list or None).
The ``request_*`` variants raise ``AnalysisError`` instead, for callers that
must tell a failure apart from an empty answer (store refresh, post
verification).
"""

import asyncio
import json
import logging
import re
import time
import uuid
from datetime import datetime, UTC
from typing import Any, List, Optional

from openai import AsyncOpenAI

from omnitruth.config import get_settings
from omnitruth.errors import AnalysisError
from omnitruth.models import (
    ALL, AnalysisResult, ContextType, IntentAnalysis, Post, PostType,
    SearchFilters, Verdict, NEUTRAL_CROWD_SCORE, coerce_score,
)


logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "System Error during Deep Scan."
FALLBACK_GRAPH_SUMMARY = "Analysis Failed."

_CONTEXT_FOCUS = {
    ContextType.NEWS: "Focus on factual verification, political bias, and source credibility.",
    ContextType.CHAT: (
        "Focus on psychological intent, passive aggression, emotional manipulation, and power "
        "dynamics between sender and receiver. Treat 'trustScore' as a 'Sincerity/Health Score'."
    ),
    ContextType.DEBATE: (
        "Focus on logical fallacies, rhetorical tricks, strength of arguments, and missing data. "
        "Treat 'trustScore' as a 'Logic/Strength Score'."
    ),
}

_SYSTEM_INSTRUCTIONS = (
    "You are the OmniTruth Engine, a fact-checking and discourse analysis service. "
    "Return ONLY valid JSON. No Markdown."
)

_ANALYSIS_PROMPT = """\
Perform a deep multi-layer analysis.

CONTEXT: {context_type} ({focus})
INPUT TEXT: "{text}"

Layers:
1. TRUTH CORE: extract claims, verify facts, check contradictions.
2. INTENT LAYER: hidden motives, what is left unsaid, emotional state.
3. MANIPULATION SHIELD: gaslighting, guilt-tripping, propaganda, fallacies.
4. REALITY GRAPH: synthesize everything into a cohesive summary.

JSON structure:
{{
  "trustScore": number (0-100),
  "verdict": "TRUE" | "MOSTLY_TRUE" | "PARTIALLY_TRUE" | "MISLEADING" | "FAKE" | "UNVERIFIED" | "SATIRE",
  "summary": "Executive summary of the reality graph",
  "claims": [
    {{"id": "1", "text": "...", "status": "SUPPORTED" | "CONTRADICTED" | "INSUFFICIENT", "confidence": number, "reasoning": "..."}}
  ],
  "intent": {{"primaryMotive": "...", "emotionalState": "...", "hiddenMeaning": "...", "powerDynamics": "..."}},
  "manipulationFlags": [
    {{"type": "...", "severity": "LOW" | "MEDIUM" | "HIGH", "description": "..."}}
  ],
  "sources": ["URLs of the sources consulted"]
}}"""

_TRENDING_PROMPT = """\
Find 5 REAL, current, trending global news stories from the last 24 hours.

Output a JSON array of social media posts:
- Use real headlines and facts.
- "trustScore" should be high (80-100) for verified news.
- "verdict" should be "TRUE" or "MOSTLY_TRUE".
- "content" is a 2-3 sentence summary in the style of a news update.
- "author" is the news organization (e.g. "Reuters", "AP", "BBC").
- "sourceUrl" is the URL of the story.

[
  {"headline": "...", "author": "...", "content": "...", "trustScore": 95, "verdict": "TRUE", "sourceUrl": "..."}
]"""

_SEARCH_PROMPT = """\
Search the web for "{query}".
{filter_context}
Return a JSON array of 3-5 social media posts that represent the search results,
each written by a relevant entity (news outlet, expert, or eyewitness):

[
  {{
    "author": "Name of source",
    "authorRole": "Journalist" | "Expert" | "Eyewitness" | "Citizen",
    "content": "The finding or news snippet",
    "trustScore": number,
    "verdict": "TRUE" | "MOSTLY_TRUE" | "PARTIALLY_TRUE" | "MISLEADING" | "FAKE" | "UNVERIFIED" | "SATIRE",
    "verificationSummary": "Why this is credible"
  }}
]"""

_REEL_PROMPT = """\
Write a BREAKING NEWS snippet about "{topic}".
Constraints: 60 words max, factual, historical chronicle tone.

Return JSON: {{"headline": "...", "snippet": "...", "imagePrompt": "..."}}"""

REEL_AUTHOR = "AI_Chronicler"
REEL_AUTHOR_ROLE = "Automaton"
REEL_TRUST_SCORE = 95

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


# =============================================================================
# Parsing helpers
# =============================================================================


def clean_json(text: Optional[str]) -> str:
    """Strip markdown code fences the model sometimes wraps JSON in."""
    if not text:
        return "{}"
    return _CODE_FENCE.sub("", text).strip()


def parse_json(text: Optional[str]) -> Any:
    try:
        return json.loads(clean_json(text))
    except (TypeError, ValueError) as e:
        raise AnalysisError(f"Collaborator returned unparseable JSON: {e}") from e


def fallback_analysis() -> AnalysisResult:
    """Neutral result used when the collaborator call fails."""
    return AnalysisResult(
        trust_score=50,
        verdict=Verdict.UNVERIFIED,
        summary=FALLBACK_SUMMARY,
        intent=IntentAnalysis(
            primary_motive="Error",
            emotional_state="Error",
            hidden_meaning="Error",
            power_dynamics="Error",
        ),
        reality_graph_summary=FALLBACK_GRAPH_SUMMARY,
    )


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _verdict(value: Any, default: Verdict) -> Verdict:
    if isinstance(value, str):
        try:
            return Verdict(value.strip().upper())
        except ValueError:
            pass
    return default


def _now_millis() -> int:
    return int(time.time() * 1000)


def _matches_filters(post: Post, filters: SearchFilters) -> bool:
    if filters.verdict != ALL and post.verdict != filters.verdict:
        return False
    if filters.author_role != ALL and post.author_role != filters.author_role.value:
        return False
    return True


# =============================================================================
# Client
# =============================================================================


class AnalysisClient:
    """
    Request/response boundary to the generative model.

    Example:
        client = AnalysisClient(api_key="...")
        result = await client.analyze_text_deeply("Water boils at 50C", ContextType.NEWS)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[Any] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Gemini API key (calls degrade to fallbacks when missing)
            base_url: OpenAI-compatible endpoint
            model: Model name
            timeout: Per-call timeout in seconds
            client: Pre-built ``AsyncOpenAI``-like client (used by tests)
        """
        settings = get_settings()
        self.api_key = (api_key or "").strip() or None
        self.base_url = base_url or settings.llm_base_url
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.analysis_timeout_seconds
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise AnalysisError("No API key configured for the analysis collaborator (OT_LLM_API_KEY)")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def _complete(self, prompt: str) -> str:
        """Send one prompt and return the raw text of the reply."""
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": _SYSTEM_INSTRUCTIONS},
                        {"role": "user", "content": prompt},
                    ],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisError(f"Collaborator call timed out after {self.timeout}s") from e
        except Exception as e:
            raise AnalysisError(f"Collaborator call failed ({self.model}): {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise AnalysisError("Collaborator response did not include message content") from e
        return content or ""

    # =========================================================================
    # Deep analysis
    # =========================================================================

    async def request_analysis(
        self,
        text: str,
        context_type: ContextType = ContextType.NEWS,
    ) -> AnalysisResult:
        """
        Run a deep analysis of ``text``.

        Missing or malformed fields in the reply are filled with defaults.

        Raises:
            AnalysisError: the call failed, timed out or returned unparseable JSON
        """
        context_type = ContextType(context_type)
        prompt = _ANALYSIS_PROMPT.format(
            context_type=context_type.value,
            focus=_CONTEXT_FOCUS[context_type],
            text=text,
        )
        parsed = parse_json(await self._complete(prompt))
        return AnalysisResult.model_validate(parsed)

    async def analyze_text_deeply(
        self,
        text: str,
        context_type: ContextType = ContextType.NEWS,
    ) -> AnalysisResult:
        """Like ``request_analysis``, but a failed call returns ``fallback_analysis()``."""
        try:
            return await self.request_analysis(text, context_type)
        except AnalysisError as e:
            logger.error(f"Deep analysis failed: {e}")
            return fallback_analysis()

    # =========================================================================
    # Feed ingestion
    # =========================================================================

    async def request_trending_posts(self) -> List[Post]:
        """
        Fetch current trending news as feed posts.

        Raises:
            AnalysisError: the call failed or the reply was not a JSON array
        """
        parsed = parse_json(await self._complete(_TRENDING_PROMPT))
        if not isinstance(parsed, list):
            raise AnalysisError("Trending posts reply was not a JSON array")

        stamp = _now_millis()
        posts = []
        for idx, item in enumerate(parsed):
            if not isinstance(item, dict) or not _text(item.get("content"), ""):
                continue
            trust = coerce_score(item.get("trustScore"), 90)
            verdict = _verdict(item.get("verdict"), Verdict.TRUE)
            source_url = _text(item.get("sourceUrl"), "")
            posts.append(Post(
                id=f"trend-{stamp}-{idx}",
                author=_text(item.get("author"), "Global Chronicler"),
                author_role="Journalist",
                content=item["content"].strip(),
                image=f"https://picsum.photos/seed/{idx}/800/400",
                timestamp=datetime.now(UTC),
                trust_score=trust,
                crowd_score=NEUTRAL_CROWD_SCORE,
                verdict=verdict,
                type=PostType.POST,
                verification_details=AnalysisResult(
                    trust_score=trust,
                    verdict=verdict,
                    summary="Verified against live global news sources.",
                    intent=IntentAnalysis(
                        primary_motive="Inform",
                        emotional_state="Neutral",
                        hidden_meaning="None",
                        power_dynamics="Neutral",
                    ),
                    sources=[source_url] if source_url else [],
                    reality_graph_summary="Real-time news ingestion confirmed.",
                ),
            ))
        return posts

    async def fetch_trending_posts(self) -> List[Post]:
        """Fetch current trending news as feed posts (empty list on failure)."""
        try:
            return await self.request_trending_posts()
        except AnalysisError as e:
            logger.error(f"Fetch trending posts failed: {e}")
            return []

    # =========================================================================
    # Generated reels
    # =========================================================================

    async def generate_reel_post(self, topic: str) -> Optional[Post]:
        """
        Write a short breaking-news post about ``topic``.

        The post is a ``GENERATED_REEL`` with a neutral crowd score and its
        verification details attached; the verdict is TRUE when the trust
        score is above 80. Only the text is generated. Returns None when the
        call fails or the reply lacks a headline or snippet.
        """
        try:
            parsed = parse_json(await self._complete(_REEL_PROMPT.format(topic=topic)))
        except AnalysisError as e:
            logger.error(f"Reel generation failed for '{topic}': {e}")
            return None

        if not isinstance(parsed, dict):
            logger.warning("Reel reply was not a JSON object")
            return None
        headline = _text(parsed.get("headline"), "")
        snippet = _text(parsed.get("snippet"), "")
        if not headline or not snippet:
            logger.warning(f"Reel reply for '{topic}' is missing a headline or snippet")
            return None

        trust = coerce_score(parsed.get("trustScore"), REEL_TRUST_SCORE)
        verdict = Verdict.TRUE if trust > 80 else Verdict.UNVERIFIED
        return Post(
            id=f"reel-{_now_millis()}-{uuid.uuid4().hex[:6]}",
            author=REEL_AUTHOR,
            author_role=REEL_AUTHOR_ROLE,
            content=f"{headline} - {snippet}",
            timestamp=datetime.now(UTC),
            trust_score=trust,
            crowd_score=NEUTRAL_CROWD_SCORE,
            verdict=verdict,
            type=PostType.GENERATED_REEL,
            verification_details=AnalysisResult(
                trust_score=trust,
                verdict=verdict,
                summary="AI Generated Visual Chronicle based on real-time data ingestion.",
                intent=IntentAnalysis(
                    primary_motive="News Generation",
                    emotional_state="Neutral",
                    hidden_meaning="None",
                    power_dynamics="None",
                ),
                reality_graph_summary="Generated content.",
            ),
        )

    # =========================================================================
    # Search
    # =========================================================================

    async def perform_global_search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
    ) -> List[Post]:
        """
        Search the web and return the findings as posts.

        Results start with a neutral crowd score and no votes. Returns an
        empty list on failure.
        """
        filters = filters or SearchFilters()
        lines = []
        if filters.date_range.value != ALL:
            lines.append(f"- Date Range: {filters.date_range.value.replace('_', ' ')}")
        if filters.author_role != ALL:
            lines.append(f"- Author Role: {filters.author_role.value}")
        if filters.verdict != ALL:
            lines.append(f"- Verdict/Status: {filters.verdict.value}")
        filter_context = (
            "Apply these strict filters to your selection of results:\n" + "\n".join(lines) + "\n"
            if lines else ""
        )

        try:
            parsed = parse_json(await self._complete(
                _SEARCH_PROMPT.format(query=query, filter_context=filter_context)
            ))
        except AnalysisError as e:
            logger.error(f"Search failed: {e}")
            return []

        if not isinstance(parsed, list):
            logger.warning("Search reply was not a JSON array")
            return []

        stamp = _now_millis()
        batch = uuid.uuid4().hex[:6]
        posts = []
        for idx, item in enumerate(parsed):
            if not isinstance(item, dict) or not _text(item.get("content"), ""):
                continue
            trust = coerce_score(item.get("trustScore"), 50)
            verdict = _verdict(item.get("verdict"), Verdict.UNVERIFIED)
            summary = _text(item.get("verificationSummary"), "Generated from search result.")
            post = Post(
                id=f"search-{stamp}-{batch}-{idx}",
                author=_text(item.get("author"), "Unknown Source"),
                author_role=_text(item.get("authorRole"), "Citizen"),
                content=item["content"].strip(),
                timestamp=datetime.now(UTC),
                trust_score=trust,
                crowd_score=NEUTRAL_CROWD_SCORE,
                verdict=verdict,
                type=PostType.POST,
                votes=[],
                verification_details=AnalysisResult(
                    trust_score=trust,
                    verdict=verdict,
                    summary=summary,
                    intent=IntentAnalysis(
                        primary_motive="Information",
                        emotional_state="Neutral",
                        hidden_meaning="None",
                        power_dynamics="Neutral",
                    ),
                    reality_graph_summary=summary,
                ),
            )
            if _matches_filters(post, filters):
                posts.append(post)
        return posts


# Global client instance
_client: Optional[AnalysisClient] = None


def get_analysis_client() -> AnalysisClient:
    """Get or create the global analysis client."""
    global _client
    if _client is None:
        _client = AnalysisClient(api_key=get_settings().llm_api_key)
    return _client
