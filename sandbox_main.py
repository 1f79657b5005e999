#!/usr/bin/env python3
"""
Sandbox entrypoint for secops-scanner.
Reads scan parameters from stdin JSON, runs a scan (or a demo snippet analysis), outputs JSON to stdout.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from pydantic import ValidationError

from secops_scanner.ai_analyzer import AIEnrichmentClient
from secops_scanner.config import ConfigError, Settings, build_provider
from secops_scanner.demo import MAX_DEMO_CODE_CHARS, analyze_demo_snippet
from secops_scanner.models import ScanStatus, ScanTarget
from secops_scanner.orchestrator import ScanExecution
from secops_scanner.store import InMemoryScanStore

logger = logging.getLogger(__name__)


def _fail(payload: dict) -> None:
    print(json.dumps(payload))
    sys.exit(1)


async def _run_scan(target: ScanTarget, settings: Settings) -> dict:
    enrichment = AIEnrichmentClient(
        build_provider(settings),
        max_snippet_chars=settings.max_snippet_tokens,
        max_tokens=settings.llm_max_tokens,
    )
    execution = ScanExecution(
        target,
        enrichment=enrichment,
        store=InMemoryScanStore(),
        max_files=settings.max_files_per_scan,
        max_file_size=settings.max_file_size_bytes,
    )
    report = await execution.run()
    if report.status == ScanStatus.FAILED:
        raise RuntimeError(report.error_message)
    return report.model_dump(mode="json")


async def _run_demo(code: str, settings: Settings) -> dict:
    result = await analyze_demo_snippet(code, build_provider(settings))
    return result.model_dump(mode="json")


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        _fail({"error": f"Invalid configuration: {e}"})

    logging.basicConfig(level=settings.log_level, stream=sys.stderr)

    try:
        input_data = json.load(sys.stdin)
    except json.JSONDecodeError as e:
        _fail({"error": f"Invalid JSON input: {e}"})

    # Support multiple input formats:
    # - code: Classify a single snippet (demo)
    # - repo_url (+ branch): Clone and scan a remote repository
    # - path/directory: Scan a local directory
    code = input_data.get("code")
    repo_url = input_data.get("repo_url")
    local_path = input_data.get("path") or input_data.get("directory")

    if code is not None:
        if not isinstance(code, str) or not code.strip():
            _fail({"error": "'code' must be a non-empty string"})
        if len(code) > MAX_DEMO_CODE_CHARS:
            _fail({"error": f"'code' must be at most {MAX_DEMO_CODE_CHARS} characters"})
        job = _run_demo(code, settings)
    elif repo_url or local_path:
        try:
            target = ScanTarget(
                repo_url=repo_url,
                branch=input_data.get("branch") or "main",
                path=None if repo_url else local_path,
            )
        except ValidationError as e:
            _fail({"error": f"Invalid scan target: {e.errors()[0]['msg']}"})
        job = _run_scan(target, settings)
    else:
        _fail(
            {
                "error": "Missing required input. Provide 'repo_url' (git URL), 'path'/'directory' (local path) or 'code' (snippet)",
                "examples": {
                    "remote": {"repo_url": "https://github.com/user/repo", "branch": "main"},
                    "local": {"path": "."},
                    "demo": {"code": "eval(userInput)"},
                },
            }
        )

    try:
        print(json.dumps(asyncio.run(job)))
    except Exception as e:
        print(json.dumps({"error": str(e)}))
        sys.exit(1)


if __name__ == "__main__":
    main()
