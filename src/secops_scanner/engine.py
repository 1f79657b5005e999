"""Rule engine: runs the rule catalog over file contents."""

import logging
from typing import Iterable

from .models import IndexedFile, RuleMatch
from .rules import GLOBAL_AUTH_USE_RE, MISSING_AUTH_RULE_ID, RULES, PatternScope, Rule

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LINES = 3
MAX_SNIPPET_CHARS = 1500


def extract_context(lines: list[str], line_index: int, radius: int = DEFAULT_CONTEXT_LINES) -> str:
    """Return the lines around ``line_index`` (0-based), capped to MAX_SNIPPET_CHARS."""
    start = max(0, line_index - radius)
    end = min(len(lines) - 1, line_index + radius)
    return "\n".join(lines[start:end + 1])[:MAX_SNIPPET_CHARS]


def _build_match(rule: Rule, file_path: str, lines: list[str], line_index: int) -> RuleMatch:
    radius = rule.context_lines if rule.context_lines is not None else DEFAULT_CONTEXT_LINES
    return RuleMatch(
        rule_id=rule.id,
        title=rule.title,
        description=rule.description,
        severity=rule.severity,
        owasp_category=rule.owasp_category,
        owasp_id=rule.owasp_id,
        file_path=file_path,
        line_start=line_index + 1,
        line_end=line_index + 1,
        code_snippet=extract_context(lines, line_index, radius),
    )


def scan_file(file_path: str, content: str, rules: Iterable[Rule] = RULES) -> list[RuleMatch]:
    """
    Run every rule against one file.

    Args:
        file_path: Path reported on each match (usually repo-relative)
        content: Full text of the file
        rules: Rule catalog to apply (defaults to the built-in catalog)

    Returns:
        Matches ordered by rule, then pattern, then line. At most one match
        per (rule, file, line).
    """
    if not content:
        return []

    lines = content.split("\n")
    matches: list[RuleMatch] = []
    seen: set[tuple[str, str, int]] = set()

    # A file-level router.use(auth...) protects every route registered in it
    file_has_global_auth = GLOBAL_AUTH_USE_RE.search(content) is not None

    for rule in rules:
        if rule.id == MISSING_AUTH_RULE_ID and file_has_global_auth:
            continue

        for pattern in rule.patterns:
            if pattern.scope == PatternScope.FILE:
                found = pattern.regex.search(content)
                candidates = [content.count("\n", 0, found.start())] if found else []
            else:
                candidates = [idx for idx, line in enumerate(lines) if pattern.regex.search(line)]

            for idx in candidates:
                key = (rule.id, file_path, idx + 1)
                if key in seen:
                    continue
                seen.add(key)
                matches.append(_build_match(rule, file_path, lines, idx))

    return matches


def scan_files(files: Iterable[IndexedFile], rules: Iterable[Rule] = RULES) -> list[RuleMatch]:
    """Run the rule engine over indexed files and concatenate the matches."""
    rules = tuple(rules)
    all_matches: list[RuleMatch] = []
    for f in files:
        all_matches.extend(scan_file(f.relative_path, f.content, rules))

    logger.info(f"Rule engine found {len(all_matches)} potential vulnerabilities")
    return all_matches
