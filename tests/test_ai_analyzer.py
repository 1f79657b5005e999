"""Tests for the AI enrichment client."""

import json
import re
from unittest.mock import AsyncMock

import pytest

from secops_scanner.ai_analyzer import (
    BATCH_DELAY_SECONDS,
    MAX_RETRIES,
    AIEnrichmentClient,
    AIResponseParseError,
    build_analysis_prompt,
    extract_json_block,
    parse_retry_delay,
    parse_verdict,
)
from secops_scanner.llm import LLMProvider, MockLLMProvider, RateLimitError
from secops_scanner.models import MAX_AI_TEXT_CHARS, RuleMatch, Severity


def make_match(line=1, rule_id="DANGEROUS_EVAL", **overrides) -> RuleMatch:
    fields = dict(
        rule_id=rule_id,
        title="Use of eval() or Function Constructor",
        description="eval() is dangerous.",
        severity=Severity.CRITICAL,
        owasp_category="A03:2021 – Injection",
        owasp_id="A03",
        file_path="src/app.js",
        line_start=line,
        line_end=line,
        code_snippet="eval(userInput);",
    )
    fields.update(overrides)
    return RuleMatch(**fields)


VERDICT = {
    "confirmed": True,
    "owaspCategory": "A05:2021 – Security Misconfiguration",
    "owaspId": "A05",
    "severity": "high",
    "explanation": "User input reaches eval().",
    "patchSuggestion": "Use JSON.parse instead.",
    "impactSummary": "Arbitrary code execution in the server process.",
}


class ScriptedProvider(LLMProvider):
    """Returns (or raises) the queued replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = 0

    async def complete(self, system, prompt, max_tokens=None):
        self.calls += 1
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class PerLineProvider(LLMProvider):
    """Fails for the listed line numbers, confirms everything else."""

    def __init__(self, failing_lines):
        self.failing_lines = set(failing_lines)

    async def complete(self, system, prompt, max_tokens=None):
        line = int(re.search(r"lines (\d+)-", prompt).group(1))
        if line in self.failing_lines:
            raise RuntimeError("upstream error")
        return json.dumps({"confirmed": True, "explanation": f"line {line}"})


class TestParseRetryDelay:
    """Test rate-limit hint parsing."""

    def test_hint_in_ms(self):
        error = RateLimitError("Rate limit reached. Please try again in 920ms.")
        assert parse_retry_delay(error) == 1120

    def test_fractional_hint_rounds_up(self):
        assert parse_retry_delay(RateLimitError("try again in 12.3 ms")) == 13 + 200

    def test_no_hint(self):
        assert parse_retry_delay(RateLimitError("slow down")) == 2000

    def test_seconds_not_recognised(self):
        assert parse_retry_delay(RateLimitError("try again in 2s")) == 2000


class TestResponseParsing:
    """Test extraction and validation of model replies."""

    def test_extract_embedded_object(self):
        text = 'Sure, here you go: {"a": {"b": 1}} hope that helps {"c": 2}'
        assert extract_json_block(text) == {"a": {"b": 1}}

    def test_extract_braces_inside_strings(self):
        text = '{"explanation": "wrap it in {} and }", "confirmed": false}'
        assert extract_json_block(text) == {"explanation": "wrap it in {} and }", "confirmed": False}

    def test_extract_skips_broken_candidates(self):
        assert extract_json_block('{not json} {"ok": 1}') == {"ok": 1}

    def test_extract_nothing(self):
        assert extract_json_block("no json here") is None
        assert extract_json_block("[1, 2, 3]") is None

    def test_parse_verdict_aliases(self):
        verdict = parse_verdict(json.dumps(VERDICT))
        assert verdict.owasp_id == "A05"
        assert verdict.severity == Severity.HIGH
        assert verdict.patch_suggestion == "Use JSON.parse instead."

    def test_parse_verdict_normalises(self):
        verdict = parse_verdict('{"severity": "CRITICAL", "owaspId": "a03:2021"}')
        assert verdict.severity == Severity.CRITICAL
        assert verdict.owasp_id == "A03"
        assert verdict.confirmed is None

    def test_parse_verdict_clips_text(self):
        verdict = parse_verdict(json.dumps({"explanation": "x" * 5000}))
        assert len(verdict.explanation) == MAX_AI_TEXT_CHARS

    @pytest.mark.parametrize(
        "reply",
        [
            "I cannot help with that.",
            '{"severity": "urgent"}',
            '{"owaspId": "OWASP-3"}',
            '{"explanation": ["not", "a", "string"]}',
        ],
    )
    def test_parse_verdict_fails_closed(self, reply):
        with pytest.raises(AIResponseParseError):
            parse_verdict(reply)


class TestBuildPrompt:
    """Test the per-finding prompt."""

    def test_contains_finding_details(self):
        prompt = build_analysis_prompt(make_match(line=7))
        assert "CRITICAL severity" in prompt
        assert "src/app.js" in prompt
        assert "Rule triggered: DANGEROUS_EVAL" in prompt
        assert "lines 7-7" in prompt

    def test_snippet_truncated(self):
        prompt = build_analysis_prompt(make_match(code_snippet="x" * 2000), max_snippet_chars=800)
        assert "x" * 800 in prompt
        assert "x" * 801 not in prompt


class TestAnalyzeMatch:
    """Test single-finding enrichment and retry."""

    @pytest.mark.asyncio
    async def test_verdict_applied(self):
        client = AIEnrichmentClient(ScriptedProvider(json.dumps(VERDICT)), sleep=AsyncMock())
        finding = await client.analyze_match(make_match())

        assert finding.ai_confirmed is True
        assert finding.ai_enriched is True
        assert finding.severity == Severity.HIGH
        assert finding.owasp_id == "A05"
        assert finding.owasp_category == "A05:2021 – Security Misconfiguration"
        assert finding.ai_impact_summary == VERDICT["impactSummary"]
        assert finding.rule_id == "DANGEROUS_EVAL"

    @pytest.mark.asyncio
    async def test_missing_fields_keep_rule_classification(self):
        client = AIEnrichmentClient(ScriptedProvider('{"explanation": "ok"}'), sleep=AsyncMock())
        finding = await client.analyze_match(make_match())

        # confirmed omitted means confirmed
        assert finding.ai_confirmed is True
        assert finding.severity == Severity.CRITICAL
        assert finding.owasp_id == "A03"
        assert finding.ai_patch_suggestion is None

    @pytest.mark.asyncio
    async def test_rejected_by_model(self):
        client = AIEnrichmentClient(ScriptedProvider('{"confirmed": false}'), sleep=AsyncMock())
        finding = await client.analyze_match(make_match())

        assert finding.ai_confirmed is False
        assert finding.ai_enriched is True
        assert finding.counts_toward_score is False

    @pytest.mark.asyncio
    async def test_retries_with_hinted_delay(self):
        sleep = AsyncMock()
        provider = ScriptedProvider(
            RateLimitError("Please try again in 920ms."),
            RateLimitError("Please try again in 920ms."),
            json.dumps(VERDICT),
        )
        client = AIEnrichmentClient(provider, sleep=sleep)
        finding = await client.analyze_match(make_match())

        assert finding.ai_enriched is True
        assert provider.calls == 3
        assert [c.args[0] for c in sleep.await_args_list] == [pytest.approx(1.12)] * 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        sleep = AsyncMock()
        provider = ScriptedProvider(*[RateLimitError("busy") for _ in range(MAX_RETRIES + 1)])
        client = AIEnrichmentClient(provider, sleep=sleep)
        finding = await client.analyze_match(make_match())

        assert provider.calls == MAX_RETRIES + 1
        assert [c.args[0] for c in sleep.await_args_list] == [2.0] * MAX_RETRIES
        assert finding.ai_confirmed is False
        assert finding.ai_enriched is False
        assert finding.ai_explanation is None
        assert finding.severity == Severity.CRITICAL

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        sleep = AsyncMock()
        provider = ScriptedProvider(RuntimeError("connection reset"))
        client = AIEnrichmentClient(provider, sleep=sleep)
        finding = await client.analyze_match(make_match())

        assert provider.calls == 1
        sleep.assert_not_awaited()
        assert finding.ai_confirmed is False
        assert finding.counts_toward_score is True

    @pytest.mark.asyncio
    async def test_unparseable_reply_degrades(self):
        provider = ScriptedProvider("Sorry, I can't do that.")
        client = AIEnrichmentClient(provider, sleep=AsyncMock())
        finding = await client.analyze_match(make_match())

        assert provider.calls == 1
        assert finding.ai_enriched is False
        assert finding.ai_explanation is None

    @pytest.mark.asyncio
    async def test_max_tokens_forwarded(self):
        provider = AsyncMock(spec=LLMProvider)
        provider.complete.return_value = json.dumps(VERDICT)
        client = AIEnrichmentClient(provider, max_tokens=1024, sleep=AsyncMock())
        await client.analyze_match(make_match())

        assert provider.complete.await_args.kwargs["max_tokens"] == 1024


class TestEnrich:
    """Test batch enrichment."""

    @pytest.mark.asyncio
    async def test_empty_input(self):
        sleep = AsyncMock()
        provider = ScriptedProvider()
        client = AIEnrichmentClient(provider, sleep=sleep)

        assert await client.enrich([]) == []
        assert provider.calls == 0
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pauses_between_groups_only(self):
        sleep = AsyncMock()
        client = AIEnrichmentClient(MockLLMProvider(), sleep=sleep)
        matches = [make_match(line=i) for i in range(1, 6)]

        findings = await client.enrich(matches)

        assert [f.line_start for f in findings] == [1, 2, 3, 4, 5]
        assert all(f.ai_confirmed for f in findings)
        # 5 matches -> 3 groups -> 2 pauses
        assert [c.args[0] for c in sleep.await_args_list] == [BATCH_DELAY_SECONDS] * 2

    @pytest.mark.asyncio
    async def test_single_group_no_pause(self):
        sleep = AsyncMock()
        client = AIEnrichmentClient(MockLLMProvider(), sleep=sleep)

        findings = await client.enrich([make_match(line=1), make_match(line=2)])

        assert len(findings) == 2
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failures_keep_order_and_length(self):
        client = AIEnrichmentClient(PerLineProvider(failing_lines={2, 3}), sleep=AsyncMock())
        matches = [make_match(line=i) for i in range(1, 5)]

        findings = await client.enrich(matches)

        assert [f.line_start for f in findings] == [1, 2, 3, 4]
        assert [f.ai_confirmed for f in findings] == [True, False, False, True]
        assert findings[0].ai_explanation == "line 1"
        assert findings[1].ai_explanation is None

    @pytest.mark.asyncio
    async def test_all_failing_never_raises(self):
        client = AIEnrichmentClient(PerLineProvider(failing_lines=range(1, 4)), sleep=AsyncMock())
        findings = await client.enrich([make_match(line=i) for i in range(1, 4)])

        assert len(findings) == 3
        assert not any(f.ai_confirmed for f in findings)
