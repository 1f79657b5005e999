"""
SECURITY DETECTION MODULE — Regex heuristics used to DETECT vulnerable
constructs in a pasted code snippet. Nothing here executes the snippet.

Single-snippet classifier for the public demo: a quick heuristic pass picks a
baseline classification, then one model request refines it. There is no
batching and no retry; any model failure returns the heuristic result.
"""

import logging
import re
from typing import NamedTuple, Optional

from pydantic import Field, ValidationError, field_validator

from .ai_analyzer import SYSTEM_PROMPT, extract_json_block
from .llm.base import LLMProvider
from .models import MAX_AI_TEXT_CHARS, AIVerdict, DemoAnalysisResult, Severity
from .rules import OWASP_LABELS

logger = logging.getLogger(__name__)

MAX_DEMO_CODE_CHARS = 5000
MAX_PROMPT_CODE_CHARS = 1500
DEMO_MAX_TOKENS = 800

DEFAULT_OWASP_ID = "A05"
DEFAULT_SEVERITY = Severity.MEDIUM
DEFAULT_SCORE = 75

BASE_SCORES = {
    Severity.CRITICAL: 30,
    Severity.HIGH: 50,
}

FALLBACK_EXPLANATION = "Rule-based detection identified a potential security issue."
FALLBACK_FIX = "Please review the code for security best practices."
MISSING_EXPLANATION = "Analysis unavailable"
MISSING_FIX = "No fix suggestion available"


class QuickRule(NamedTuple):
    pattern: re.Pattern
    owasp_id: str
    severity: Severity
    label: str


# First match wins
QUICK_RULES: tuple[QuickRule, ...] = (
    QuickRule(re.compile(r"eval\s*\("), "A03", Severity.CRITICAL, "Dangerous eval()"),
    QuickRule(
        re.compile(r"""(?:password|secret|apikey|token)\s*[:=]\s*["'][^"']{4,}""", re.IGNORECASE),
        "A02",
        Severity.CRITICAL,
        "Hardcoded secret",
    ),
    QuickRule(re.compile(r"jwt\.decode\s*\("), "A07", Severity.HIGH, "JWT not verified"),
    QuickRule(re.compile(r"""origin\s*:\s*["']\*["']""", re.IGNORECASE), "A05", Severity.HIGH, "CORS wildcard"),
    QuickRule(re.compile(r"""createHash\s*\(\s*["']md5["']""", re.IGNORECASE), "A02", Severity.MEDIUM, "Weak hash (MD5)"),
)


class DemoVerdict(AIVerdict):
    """Model reply for the demo prompt: the finding verdict plus a fix and a score."""

    fix: Optional[str] = None
    score: Optional[int] = Field(default=None)

    @field_validator("fix", mode="before")
    @classmethod
    def _clip_fix(cls, value):
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("expected a string")
        return value.strip()[:MAX_AI_TEXT_CHARS] or None

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return max(0, min(100, round(value)))
        raise ValueError("expected a number")


def quick_classify(code: str) -> tuple[str, Severity, int]:
    """Return (owasp_id, severity, base_score) from the first heuristic that fires."""
    for rule in QUICK_RULES:
        if rule.pattern.search(code):
            return rule.owasp_id, rule.severity, BASE_SCORES.get(rule.severity, DEFAULT_SCORE)
    return DEFAULT_OWASP_ID, DEFAULT_SEVERITY, DEFAULT_SCORE


def build_demo_prompt(code: str) -> str:
    return f"""Analyze this code snippet for security issues:

```javascript
{code[:MAX_PROMPT_CODE_CHARS]}
```

Respond with EXACTLY this JSON:
{{
  "confirmed": boolean,
  "owaspId": "A##",
  "owaspCategory": "full OWASP category name",
  "severity": "critical|high|medium|low|info",
  "explanation": "short developer-friendly explanation (max 200 words)",
  "fix": "concrete fix with code example (max 200 words)",
  "score": number between 0-100
}}"""


def _label(owasp_id: str) -> str:
    return OWASP_LABELS.get(owasp_id, owasp_id)


async def analyze_demo_snippet(code: str, provider: LLMProvider) -> DemoAnalysisResult:
    """
    Classify a single snippet.

    Args:
        code: Snippet text (callers enforce MAX_DEMO_CODE_CHARS)
        provider: Model backend for the refinement request

    Returns:
        DemoAnalysisResult. ``confirmed`` is False when the model could not
        be used and the result comes from the heuristics alone.
    """
    owasp_id, severity, base_score = quick_classify(code)

    try:
        raw = await provider.complete(SYSTEM_PROMPT, build_demo_prompt(code), max_tokens=DEMO_MAX_TOKENS)
        payload = extract_json_block(raw or "")
        if payload is None:
            raise ValueError("No JSON object in model response")
        verdict = DemoVerdict.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Demo analysis reply unusable ({e.error_count()} invalid field(s)), using heuristics")
        return _fallback(owasp_id, severity, base_score)
    except Exception as e:
        logger.warning(f"Demo analysis request failed, falling back to heuristics: {e}")
        return _fallback(owasp_id, severity, base_score)

    return DemoAnalysisResult(
        security_score=verdict.score if verdict.score is not None else base_score,
        owasp_mapping=verdict.owasp_category or _label(owasp_id),
        owasp_id=verdict.owasp_id or owasp_id,
        severity=(verdict.severity or severity).value,
        explanation=verdict.explanation or MISSING_EXPLANATION,
        suggested_fix=verdict.fix or MISSING_FIX,
        confirmed=verdict.confirmed if verdict.confirmed is not None else True,
    )


def _fallback(owasp_id: str, severity: Severity, base_score: int) -> DemoAnalysisResult:
    return DemoAnalysisResult(
        security_score=base_score,
        owasp_mapping=_label(owasp_id),
        owasp_id=owasp_id,
        severity=severity.value,
        explanation=FALLBACK_EXPLANATION,
        suggested_fix=FALLBACK_FIX,
        confirmed=False,
    )
