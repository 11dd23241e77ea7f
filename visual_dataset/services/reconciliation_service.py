from __future__ import annotations

from dataclasses import dataclass, field
import logging
import posixpath
import time
from typing import Callable

from visual_dataset.config import settings
from visual_dataset.infra.repositories import DatasetRepository, LoadError
from visual_dataset.services.catalog_service import DistrictCatalog

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    scanned_folders: int = 0
    scanned_blobs: int = 0
    orphaned: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped_recent: list[str] = field(default_factory=list)
    failed_folders: list[str] = field(default_factory=list)


def uploaded_at_ms(path: str) -> int | None:
    """Upload time encoded in a ``<epoch_ms>-<token>.<ext>`` file name."""
    head = posixpath.basename(path).split("-", 1)[0]
    return int(head) if head.isdigit() else None


class ReconciliationService:
    """Finds uploaded images that no submission references.

    Orphans come from a record insert failing after its image upload
    succeeded. Blobs are looked up per district folder (``state/district``),
    so the district catalog bounds the scan. Blobs are listed before the
    submissions are read, and blobs younger than the grace window are left
    alone, so an upload whose insert lands mid-scan is never reported.
    """

    def __init__(
        self,
        repo: DatasetRepository,
        *,
        grace_seconds: float | None = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.repo = repo
        self.grace_seconds = settings.orphan_grace_seconds if grace_seconds is None else grace_seconds
        self.wall_clock = wall_clock

    def _is_recent(self, path: str, cutoff_ms: int) -> bool:
        stamp = uploaded_at_ms(path)
        # Unknown names carry no upload time; never treat them as settled.
        return stamp is None or stamp > cutoff_ms

    def find_orphans(self) -> ReconciliationReport:
        report = ReconciliationReport()
        catalog = DistrictCatalog(self.repo).load()
        if catalog.error:
            raise LoadError(catalog.error)

        cutoff_ms = int((self.wall_clock() - self.grace_seconds) * 1000)
        candidates: list[str] = []
        for district in catalog.all_districts:
            folder = f"{district.state}/{district.district_name}"
            try:
                paths = self.repo.list_blobs(folder)
            except LoadError as exc:
                logger.warning("reconcile.folder_failed folder=%s error=%s", folder, exc)
                report.failed_folders.append(folder)
                continue
            report.scanned_folders += 1
            report.scanned_blobs += len(paths)
            for path in paths:
                if self._is_recent(path, cutoff_ms):
                    report.skipped_recent.append(path)
                else:
                    candidates.append(path)

        referenced = {str(r.get("image_url") or "") for r in self.repo.list_submissions()}
        report.orphaned = [p for p in candidates if self.repo.public_url(p) not in referenced]

        logger.info(
            "reconcile.scanned folders=%d blobs=%d skipped_recent=%d orphaned=%d",
            report.scanned_folders,
            report.scanned_blobs,
            len(report.skipped_recent),
            len(report.orphaned),
        )
        return report

    def reconcile(self, delete: bool = False) -> ReconciliationReport:
        report = self.find_orphans()
        if delete and report.orphaned:
            report.removed = self.repo.remove_blobs(report.orphaned)
            logger.info("reconcile.removed count=%d", len(report.removed))
        return report
