"""Tests for the security score calculator."""

import pytest
from pydantic import ValidationError

from secops_scanner.models import EnrichedFinding, Severity, SeverityCounts
from secops_scanner.scorer import (
    build_owasp_distribution,
    build_score_result,
    calculate_security_score,
    count_by_severity,
)


def make_finding(severity="high", owasp_id="A05", **overrides) -> EnrichedFinding:
    fields = dict(
        rule_id="CORS_WILDCARD",
        title="CORS Wildcard Origin (*)",
        description="d",
        severity=severity,
        owasp_category=f"{owasp_id}:2021 – Something",
        owasp_id=owasp_id,
        file_path="app.js",
        line_start=1,
        line_end=1,
        code_snippet="x",
    )
    fields.update(overrides)
    return EnrichedFinding(**fields)


class TestCalculateSecurityScore:
    """Test score arithmetic."""

    def test_no_findings(self):
        assert calculate_security_score(SeverityCounts()) == 100

    def test_one_critical(self):
        assert calculate_security_score(SeverityCounts(critical=1)) == 75

    def test_four_criticals(self):
        assert calculate_security_score(SeverityCounts(critical=4)) == 0

    def test_clamped_at_zero(self):
        assert calculate_security_score(SeverityCounts(critical=10)) == 0

    def test_mixed(self):
        counts = SeverityCounts(high=2, medium=1, low=3)
        assert calculate_security_score(counts) == 100 - 20 - 5 - 6

    def test_info_is_free(self):
        assert calculate_security_score(SeverityCounts(info=50)) == 100

    @pytest.mark.parametrize("severity", list(Severity))
    def test_never_increases(self, severity):
        previous = 100
        for n in range(0, 12):
            score = calculate_security_score(SeverityCounts(**{severity.value: n}))
            assert 0 <= score <= previous
            previous = score

    def test_severity_rank_order(self):
        ranks = [s.rank for s in (Severity.INFO, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 5

    def test_negative_counts_rejected(self):
        with pytest.raises(ValidationError):
            SeverityCounts(high=-1)


class TestAggregation:
    """Test severity counting and OWASP distribution."""

    def test_count_by_severity(self):
        counts = count_by_severity(["high", Severity.HIGH, "info"])
        assert counts.model_dump() == {"critical": 0, "high": 2, "medium": 0, "low": 0, "info": 1}

    def test_count_unknown_severity(self):
        with pytest.raises(ValueError):
            count_by_severity(["urgent"])

    def test_owasp_distribution(self):
        assert build_owasp_distribution(["A03", "A02", "A03"]) == {"A03": 2, "A02": 1}
        assert build_owasp_distribution([]) == {}

    def test_rejected_findings_excluded(self):
        findings = [
            make_finding("critical", "A03", ai_confirmed=True, ai_enriched=True),
            make_finding("high", "A05", ai_confirmed=False, ai_enriched=True),
            make_finding("medium", "A08", ai_confirmed=False, ai_enriched=False),
        ]
        result = build_score_result(findings)

        # The rejected high finding does not count; the degraded medium one does
        assert result.score == 100 - 25 - 5
        assert result.counts.critical == 1
        assert result.counts.high == 0
        assert result.counts.medium == 1
        assert result.owasp_distribution == {"A03": 1, "A08": 1}

    def test_empty_result(self):
        result = build_score_result([])
        assert result.score == 100
        assert result.owasp_distribution == {}
