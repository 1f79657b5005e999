import json
import re
from typing import Optional

from .base import LLMProvider

_RULE_RE = re.compile(r"Rule triggered:\s*(\S+)")


class MockLLMProvider(LLMProvider):
    """Mock LLM for development and testing.

    Confirms every finding without reclassifying it.
    """

    async def complete(self, system: str, prompt: str, max_tokens: Optional[int] = None) -> str:
        rule = _RULE_RE.search(prompt)
        if rule:
            return json.dumps({
                "confirmed": True,
                "explanation": f"Mock analysis: rule {rule.group(1)} matched this code.",
                "patchSuggestion": "Review the flagged lines and apply the rule's remediation.",
                "impactSummary": "Not assessed (mock provider).",
            })

        return json.dumps({
            "confirmed": True,
            "explanation": "Mock analysis of the submitted snippet.",
            "fix": "Review the snippet for security best practices.",
        })
