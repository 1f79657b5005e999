"""LLM-based enrichment: confirm, reclassify and explain rule matches.

Requests go out in groups of two with a pause between groups to stay under
the model service's throughput limits. A throttled request is retried using
the delay the service suggests. Any finding the model cannot answer for is
kept as a rule-only result, so a batch never fails as a whole.
"""

import asyncio
import json
import logging
import math
import re
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import ValidationError

from .llm.base import LLMProvider, RateLimitError
from .models import AIVerdict, EnrichedFinding, RuleMatch

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a senior application security engineer.
Analyze the provided code snippet for security vulnerabilities.
Respond ONLY with valid JSON. Never suggest offensive payloads or exploitation techniques.
Your role is to help developers understand and fix vulnerabilities."""

DEFAULT_MAX_SNIPPET_CHARS = 800

# 4 retries -> 5 attempts per finding
MAX_RETRIES = 4
DEFAULT_RETRY_DELAY_MS = 2000
RETRY_MARGIN_MS = 200

# Concurrent requests per group and pause between groups
BATCH_SIZE = 2
BATCH_DELAY_SECONDS = 1.5

_RETRY_HINT_RE = re.compile(r"try again in ([\d.]+)\s*ms", re.IGNORECASE)

_decoder = json.JSONDecoder()


class AIResponseParseError(ValueError):
    """The model reply did not contain a usable verdict."""


def build_analysis_prompt(match: RuleMatch, max_snippet_chars: int = DEFAULT_MAX_SNIPPET_CHARS) -> str:
    """Build the per-finding user prompt."""
    return f"""Analyze this {match.severity.value.upper()} severity potential vulnerability in file: {match.file_path}

Rule triggered: {match.rule_id}
Initial finding: {match.title}

Code snippet (lines {match.line_start}-{match.line_end}):
```
{match.code_snippet[:max_snippet_chars]}
```

Respond with EXACTLY this JSON structure (no other text):
{{
  "confirmed": boolean,
  "owaspCategory": "string",
  "owaspId": "A##",
  "severity": "critical|high|medium|low|info",
  "explanation": "Clear explanation of the vulnerability for a developer (max 300 words)",
  "patchSuggestion": "Concrete code fix suggestion (max 300 words)",
  "impactSummary": "Descriptive impact summary - NO offensive content (max 150 words)"
}}"""


def parse_retry_delay(error: BaseException) -> int:
    """Return the retry delay in ms suggested by a rate-limit error.

    Looks for "try again in N ms" in the error text and adds a safety margin.
    Falls back to DEFAULT_RETRY_DELAY_MS when there is no usable hint.
    """
    match = _RETRY_HINT_RE.search(str(error))
    if match:
        try:
            return math.ceil(float(match.group(1))) + RETRY_MARGIN_MS
        except ValueError:
            pass
    return DEFAULT_RETRY_DELAY_MS


def extract_json_block(text: str) -> Optional[dict[str, Any]]:
    """Return the first well-formed JSON object embedded in ``text``."""
    start = text.find("{")
    while start != -1:
        try:
            parsed, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
        start = text.find("{", start + 1)
    return None


def parse_verdict(text: str) -> AIVerdict:
    """Parse a raw model reply. Raises AIResponseParseError on any mismatch."""
    payload = extract_json_block(text or "")
    if payload is None:
        raise AIResponseParseError("No JSON object in model response")
    try:
        return AIVerdict.model_validate(payload)
    except ValidationError as e:
        raise AIResponseParseError(f"Unexpected response shape: {e.error_count()} invalid field(s)") from e


def _rule_fields(match: RuleMatch, exclude: Optional[set[str]] = None) -> dict[str, Any]:
    # Only the RuleMatch fields, even when handed an already enriched finding
    fields = set(RuleMatch.model_fields) - (exclude or set())
    return match.model_dump(include=fields)


def apply_verdict(match: RuleMatch, verdict: AIVerdict) -> EnrichedFinding:
    """Merge a verdict into a match. The model's classification wins when given."""
    base = _rule_fields(match, exclude={"severity", "owasp_category", "owasp_id"})
    return EnrichedFinding(
        **base,
        severity=verdict.severity or match.severity,
        owasp_category=verdict.owasp_category or match.owasp_category,
        owasp_id=verdict.owasp_id or match.owasp_id,
        ai_confirmed=verdict.confirmed if verdict.confirmed is not None else True,
        ai_enriched=True,
        ai_explanation=verdict.explanation,
        ai_patch_suggestion=verdict.patch_suggestion,
        ai_impact_summary=verdict.impact_summary,
    )


def rule_only_finding(match: RuleMatch) -> EnrichedFinding:
    """Unconfirmed finding carrying only the rule's own classification."""
    return EnrichedFinding(**_rule_fields(match), ai_confirmed=False)


class AIEnrichmentClient:
    """Rate-limited batch client that runs rule matches past a language model.

    Args:
        provider: Model backend used for every request.
        max_snippet_chars: Snippet budget per prompt.
        max_tokens: Reply budget passed to the provider (provider default if None).
        sleep: Awaitable sleep taking seconds; replaced in tests.
    """

    def __init__(
        self,
        provider: LLMProvider,
        max_snippet_chars: int = DEFAULT_MAX_SNIPPET_CHARS,
        max_tokens: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.max_snippet_chars = max_snippet_chars
        self.max_tokens = max_tokens
        self._sleep = sleep

    async def analyze_match(self, match: RuleMatch) -> EnrichedFinding:
        """Enrich one match. Never raises; failures yield a rule-only finding."""
        prompt = build_analysis_prompt(match, self.max_snippet_chars)

        for attempt in range(MAX_RETRIES + 1):
            try:
                raw = await self.provider.complete(SYSTEM_PROMPT, prompt, max_tokens=self.max_tokens)
                return apply_verdict(match, parse_verdict(raw))
            except RateLimitError as e:
                if attempt < MAX_RETRIES:
                    delay_ms = parse_retry_delay(e)
                    logger.warning(
                        f"Rate limit hit for {match.rule_id}, retrying in {delay_ms}ms "
                        f"(attempt {attempt + 1}/{MAX_RETRIES})"
                    )
                    await self._sleep(delay_ms / 1000)
                    continue
                logger.warning(f"Rate limit retries exhausted for {match.rule_id}, using rule-only result")
            except Exception as e:
                logger.warning(f"AI analysis failed for {match.rule_id}, using rule-only result: {e}")
            break

        return rule_only_finding(match)

    async def enrich(self, matches: Sequence[RuleMatch]) -> list[EnrichedFinding]:
        """
        Enrich every match, two at a time.

        Returns:
            One finding per input match, in input order.
        """
        results: list[EnrichedFinding] = []

        for i in range(0, len(matches), BATCH_SIZE):
            batch = matches[i:i + BATCH_SIZE]
            results.extend(await asyncio.gather(*(self.analyze_match(m) for m in batch)))

            if i + BATCH_SIZE < len(matches):
                await self._sleep(BATCH_DELAY_SECONDS)

        confirmed = sum(1 for f in results if f.ai_confirmed)
        logger.info(f"AI enrichment finished: {confirmed}/{len(results)} findings confirmed")
        return results
