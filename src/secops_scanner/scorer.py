"""Scoring logic: turns classified findings into a 0-100 security score."""

from collections import Counter
from typing import Iterable

from .models import EnrichedFinding, ScoreResult, Severity, SeverityCounts


# Points deducted per finding (info findings are free)
SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
    Severity.INFO: 0,
}

MAX_DEDUCTION = 100


def calculate_security_score(counts: SeverityCounts) -> int:
    """Compute the security score (0-100) from per-severity counts."""
    deduction = sum(weight * counts.get(severity) for severity, weight in SEVERITY_WEIGHTS.items())
    deduction = min(deduction, MAX_DEDUCTION)
    return max(0, 100 - deduction)


def count_by_severity(severities: Iterable[Severity | str]) -> SeverityCounts:
    """Tally severities into a SeverityCounts with every level present."""
    tally = Counter(Severity(s).value for s in severities)
    return SeverityCounts(**tally)


def build_owasp_distribution(owasp_ids: Iterable[str]) -> dict[str, int]:
    """Count occurrences of each OWASP code. Codes never seen are absent."""
    return dict(Counter(owasp_ids))


def build_score_result(findings: Iterable[EnrichedFinding]) -> ScoreResult:
    """Aggregate findings into score, severity counts and OWASP distribution.

    Findings the AI explicitly dismissed do not count. Findings whose
    enrichment degraded still count because the rule fired.
    """
    counted = [f for f in findings if f.counts_toward_score]
    counts = count_by_severity(f.severity for f in counted)
    return ScoreResult(
        score=calculate_security_score(counts),
        counts=counts,
        owasp_distribution=build_owasp_distribution(f.owasp_id for f in counted),
    )
