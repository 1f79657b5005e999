"""
SECURITY DETECTION MODULE — This file contains regex patterns used to DETECT
vulnerabilities in user codebases (injection, hardcoded secrets, weak crypto,
misconfiguration). These patterns are used for READ-ONLY static analysis.
This code does NOT execute any of the dangerous operations it scans for.

The catalog is static configuration: rules are built once at import time and
never mutated. Each pattern declares its scope explicitly:

- ``LINE`` patterns are tested against every line of a file on its own.
- ``FILE`` patterns are tested once against the whole file and may span lines.
"""

import re
from enum import Enum
from typing import NamedTuple, Optional

from .models import Severity


class PatternScope(str, Enum):
    LINE = "line"
    FILE = "file"


class RulePattern(NamedTuple):
    """A single matcher belonging to a rule."""

    regex: re.Pattern
    scope: PatternScope = PatternScope.LINE


class Rule(NamedTuple):
    """A static detection rule."""

    id: str
    title: str
    description: str
    severity: Severity
    owasp_category: str
    owasp_id: str
    patterns: tuple[RulePattern, ...]
    context_lines: Optional[int] = None


def _line(pattern: str, flags: int = 0) -> RulePattern:
    return RulePattern(re.compile(pattern, flags), PatternScope.LINE)


# OWASP Top 10 (2021) labels keyed by short code
OWASP_LABELS = {
    "A01": "A01:2021 – Broken Access Control",
    "A02": "A02:2021 – Cryptographic Failures",
    "A03": "A03:2021 – Injection",
    "A04": "A04:2021 – Insecure Design",
    "A05": "A05:2021 – Security Misconfiguration",
    "A06": "A06:2021 – Vulnerable Components",
    "A07": "A07:2021 – Identification and Authentication Failures",
    "A08": "A08:2021 – Software and Data Integrity Failures",
    "A09": "A09:2021 – Security Logging Failures",
    "A10": "A10:2021 – Server-Side Request Forgery",
}

_I = re.IGNORECASE

MISSING_AUTH_RULE_ID = "MISSING_AUTH_MIDDLEWARE"

RULES: tuple[Rule, ...] = (
    # --- Injection ---
    Rule(
        id="SQL_INJECTION_CONCAT",
        title="Potential SQL Injection via String Concatenation",
        description="SQL query built using string concatenation with user-controlled input.",
        severity=Severity.CRITICAL,
        owasp_category=OWASP_LABELS["A03"],
        owasp_id="A03",
        patterns=(
            _line(r"`SELECT\s+.+\$\{", _I),
            _line(r"""["']SELECT\s.+\+\s*(req\.|body\.|params\.|query\.)""", _I),
            _line(r"""query\s*\(?\s*["'`].*SELECT.*\+""", _I),
        ),
    ),
    # --- Cryptographic failures ---
    Rule(
        id="HARDCODED_SECRET",
        title="Hardcoded Secret / Credential",
        description="Sensitive credential or secret found hardcoded in source code.",
        severity=Severity.CRITICAL,
        owasp_category=OWASP_LABELS["A02"],
        owasp_id="A02",
        patterns=(
            _line(
                r"""(?:password|passwd|secret|api_?key|apiKey|private_?key|token|auth)\s*[:=]\s*["'][^"']{8,}["']""",
                _I,
            ),
            _line(r"""(?:AWS|GCP|AZURE)_(?:ACCESS|SECRET)_KEY\s*=\s*["'][^"']{10,}["']""", _I),
        ),
    ),
    Rule(
        id="WEAK_CRYPTO",
        title="Weak Cryptographic Algorithm",
        description="Use of deprecated or weak cryptographic algorithms (MD5, SHA1, DES, RC4).",
        severity=Severity.HIGH,
        owasp_category=OWASP_LABELS["A02"],
        owasp_id="A02",
        patterns=(
            _line(r"""createHash\s*\(\s*["'](?:md5|sha1|des|rc4)["']""", _I),
            _line(r"crypto\.createCipher\s*\(", _I),
        ),
    ),
    # --- Code / command injection ---
    Rule(
        id="DANGEROUS_EVAL",
        title="Use of eval() or Function Constructor",
        description="eval() and Function() are dangerous and can lead to code injection.",
        severity=Severity.CRITICAL,
        owasp_category=OWASP_LABELS["A03"],
        owasp_id="A03",
        patterns=(
            _line(r"\beval\s*\("),
            _line(r"new\s+Function\s*\("),
            _line(r"""setTimeout\s*\(\s*["'`]"""),
            _line(r"""setInterval\s*\(\s*["'`]"""),
        ),
    ),
    Rule(
        id="COMMAND_INJECTION",
        title="Potential Command Injection via exec/spawn",
        description="Shell commands executed with unsanitized user input.",
        severity=Severity.CRITICAL,
        owasp_category=OWASP_LABELS["A03"],
        owasp_id="A03",
        patterns=(
            _line(r"(?:exec|execSync|spawn|spawnSync)\s*\(\s*(?:req\.|body\.|params\.|query\.|\$\{|`[^`]*\$)", _I),
            _line(r"""child_process\.exec\s*\(\s*[`"'][^)]*\+""", _I),
        ),
    ),
    # --- Security misconfiguration ---
    Rule(
        id="CORS_WILDCARD",
        title="CORS Wildcard Origin (*)",
        description="Application allows all origins via CORS wildcard, enabling cross-origin attacks.",
        severity=Severity.HIGH,
        owasp_category=OWASP_LABELS["A05"],
        owasp_id="A05",
        patterns=(
            _line(r"""origin\s*:\s*["'`]\*["'`]""", _I),
            _line(r"""cors\s*\(\s*\{\s*origin\s*:\s*["'`]\*["'`]""", _I),
            _line(r"Access-Control-Allow-Origin.*\*", _I),
        ),
    ),
    Rule(
        id="MISSING_HELMET",
        title="Missing Security Headers (Helmet not used)",
        description="Express app does not appear to use Helmet for security headers.",
        severity=Severity.MEDIUM,
        owasp_category=OWASP_LABELS["A05"],
        owasp_id="A05",
        patterns=(
            # express() with no helmet reference later on the same line
            _line(r"express\s*\(\s*\)(?!.{0,500}helmet)"),
        ),
    ),
    # --- Authentication ---
    Rule(
        id=MISSING_AUTH_RULE_ID,
        title="Route without Authentication Middleware",
        description="API route registered without authentication guard.",
        severity=Severity.HIGH,
        owasp_category=OWASP_LABELS["A07"],
        owasp_id="A07",
        patterns=(
            # Non-public path and no auth-related word after the path argument
            _line(
                r"router\.(get|post|put|delete|patch)\s*\(\s*[\"'`]"
                r"(?!/?(login|logout|callback|health|public|static|webhook|auth|oauth|signup|register|verify|ping))"
                r"[^\"'`]+[\"'`]\s*,\s*"
                r"(?!.*\b(?:auth|verify|protect|guard|passport|authenticate|middleware|session|token|jwt|require))",
                _I,
            ),
        ),
    ),
    Rule(
        id="JWT_NO_VERIFY",
        title="JWT Token Not Verified",
        description="JWT decoded without verification using jwt.decode() instead of jwt.verify().",
        severity=Severity.HIGH,
        owasp_category=OWASP_LABELS["A07"],
        owasp_id="A07",
        patterns=(_line(r"jwt\.decode\s*\(", _I),),
    ),
    # --- SSRF ---
    Rule(
        id="SSRF_PATTERN",
        title="Potential Server-Side Request Forgery (SSRF)",
        description="HTTP request made using user-supplied URL without validation.",
        severity=Severity.HIGH,
        owasp_category=OWASP_LABELS["A10"],
        owasp_id="A10",
        patterns=(
            _line(r"(?:axios|fetch|got|request|http\.get|https\.get)\s*\(\s*(?:req\.|body\.|params\.|query\.|\$\{)", _I),
        ),
    ),
    # --- Data integrity ---
    Rule(
        id="PROTOTYPE_POLLUTION",
        title="Prototype Pollution Risk",
        description="Object merge/assign operations without prototype protection.",
        severity=Severity.MEDIUM,
        owasp_category=OWASP_LABELS["A08"],
        owasp_id="A08",
        patterns=(
            _line(r"Object\.assign\s*\(\s*(?:req\.|body\.|params\.)", _I),
            _line(r"\bmerge\s*\(\s*(?:req\.|body\.|params\.)", _I),
        ),
    ),
)

# router.use(...) / app.use(...) applying an auth middleware to every route in the file
GLOBAL_AUTH_USE_RE = re.compile(
    r"(?:router|app)\.use\s*\([^)]*(?:auth|verify|protect|guard|passport|authenticate|token|jwt)[^)]*\)",
    re.IGNORECASE,
)

_RULES_BY_ID = {rule.id: rule for rule in RULES}


def get_rule(rule_id: str) -> Rule:
    """Look up a catalog rule by id. Raises KeyError for unknown ids."""
    return _RULES_BY_ID[rule_id]
