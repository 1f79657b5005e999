"""Scan orchestration: source tree -> rule engine -> AI enrichment -> score -> store."""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .ai_analyzer import AIEnrichmentClient
from .engine import scan_files
from .file_walker import DEFAULT_MAX_FILE_SIZE, DEFAULT_MAX_FILES, walk_repo
from .git_utils import SourceProvider, SourceRetrievalError, provider_for
from .models import TERMINAL_STATUSES, IndexedFile, RuleMatch, ScanReport, ScanStatus, ScanTarget
from .scorer import build_score_result
from .store import ScanStore

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Scan failed due to an internal error"
PERSISTENCE_FAILURE_MESSAGE = "Scan results could not be saved"

_TRANSITIONS = {
    ScanStatus.QUEUED: {ScanStatus.RUNNING, ScanStatus.CANCELLED},
    ScanStatus.RUNNING: {ScanStatus.COMPLETED, ScanStatus.FAILED},
}


class InvalidTransitionError(Exception):
    """A scan was asked to move to a state it cannot reach from its current one."""


class ReportPersistenceError(Exception):
    """The completed report could not be written to the scan store."""


def _user_message(error: BaseException) -> str:
    # Source errors are written to be shown; anything else may leak internals
    if isinstance(error, SourceRetrievalError):
        return str(error)
    if isinstance(error, ReportPersistenceError):
        return PERSISTENCE_FAILURE_MESSAGE
    return GENERIC_FAILURE_MESSAGE


class ScanExecution:
    """
    One scan of one target.

    Lifecycle: queued -> running -> completed | failed. A queued scan can be
    cancelled instead. The source tree is released on every exit path of
    run(), and run() reports failures through the returned ScanReport rather
    than raising.
    """

    def __init__(
        self,
        target: ScanTarget,
        enrichment: AIEnrichmentClient,
        store: ScanStore,
        source: Optional[SourceProvider] = None,
        scan_id: Optional[str] = None,
        max_files: int = DEFAULT_MAX_FILES,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ):
        self.scan_id = scan_id or str(uuid.uuid4())
        self.target = target
        self.enrichment = enrichment
        self.store = store
        self.source = source or provider_for(target)
        self.max_files = max_files
        self.max_file_size = max_file_size
        self._status = ScanStatus.QUEUED

    @property
    def status(self) -> ScanStatus:
        return self._status

    def _transition(self, new_status: ScanStatus) -> None:
        if new_status not in _TRANSITIONS.get(self._status, set()):
            raise InvalidTransitionError(
                f"Scan {self.scan_id}: cannot go from {self._status.value} to {new_status.value}"
            )
        logger.debug(f"Scan {self.scan_id}: {self._status.value} -> {new_status.value}")
        self._status = new_status

    def cancel(self) -> None:
        """Cancel a scan that has not started. Raises InvalidTransitionError otherwise."""
        self._transition(ScanStatus.CANCELLED)
        logger.info(f"Scan {self.scan_id} cancelled")

    def queued_report(self) -> ScanReport:
        """Report describing the scan before it runs (or after it was cancelled)."""
        return ScanReport(scan_id=self.scan_id, target=self.target, status=self._status)

    def _index_and_match(self, repo_path: Path) -> tuple[list[IndexedFile], list[RuleMatch]]:
        files = walk_repo(repo_path, max_files=self.max_files, max_file_size=self.max_file_size)
        return files, scan_files(files)

    async def run(self) -> ScanReport:
        """Execute the scan and persist its report. Returns the final report."""
        self._transition(ScanStatus.RUNNING)
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        logger.info(f"Scan {self.scan_id} started for {self.target.display_name}")

        repo_path: Optional[Path] = None
        try:
            repo_path = await asyncio.to_thread(self.source.acquire, self.target)
            files, matches = await asyncio.to_thread(self._index_and_match, repo_path)

            findings = await self.enrichment.enrich(matches)
            result = build_score_result(findings)

            report = ScanReport(
                scan_id=self.scan_id,
                target=self.target,
                status=ScanStatus.COMPLETED,
                score=result.score,
                counts=result.counts,
                owasp_distribution=result.owasp_distribution,
                findings=findings,
                files_scanned=len(files),
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            try:
                await self.store.save(report)
            except Exception as e:
                raise ReportPersistenceError(f"Could not save report for scan {self.scan_id}") from e
            self._transition(ScanStatus.COMPLETED)
            logger.info(f"Scan {self.scan_id} completed. Score: {result.score}, Vulns: {len(findings)}")
            return report
        except Exception as e:
            logger.exception(f"Scan {self.scan_id} failed: {e}")
            return await self._fail(e, started_at, started)
        finally:
            if repo_path is not None:
                await asyncio.to_thread(self._release, repo_path)

    async def _fail(self, error: Exception, started_at: datetime, started: float) -> ScanReport:
        self._transition(ScanStatus.FAILED)
        report = ScanReport(
            scan_id=self.scan_id,
            target=self.target,
            status=ScanStatus.FAILED,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration_ms=int((time.monotonic() - started) * 1000),
            error_message=_user_message(error),
        )
        try:
            await self.store.save(report)
        except Exception as save_error:
            logger.error(f"Could not record failure of scan {self.scan_id}: {save_error}")
        return report

    def _release(self, repo_path: Path) -> None:
        try:
            self.source.release(repo_path)
        except Exception as e:
            logger.warning(f"Could not release source tree {repo_path}: {e}")

    @property
    def finished(self) -> bool:
        return self._status in TERMINAL_STATUSES
