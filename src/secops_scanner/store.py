"""Persistence boundary for scan reports."""

from abc import ABC, abstractmethod
from typing import Optional

from .models import ScanReport


class ScanStore(ABC):
    """Where finished (or failed) scan reports are written."""

    @abstractmethod
    async def save(self, report: ScanReport) -> None:
        pass

    @abstractmethod
    async def get(self, scan_id: str) -> Optional[ScanReport]:
        pass


class InMemoryScanStore(ScanStore):
    """Process-local store keyed by scan id. Later saves replace earlier ones."""

    def __init__(self):
        self._reports: dict[str, ScanReport] = {}

    async def save(self, report: ScanReport) -> None:
        self._reports[report.scan_id] = report

    async def get(self, scan_id: str) -> Optional[ScanReport]:
        return self._reports.get(scan_id)
