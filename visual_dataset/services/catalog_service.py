from __future__ import annotations

import logging

from visual_dataset.domain.models import District
from visual_dataset.infra.repositories import DatasetRepository, LoadError

logger = logging.getLogger(__name__)


class DistrictCatalog:
    """In-memory index of the (state, district) reference list.

    Loaded once per view. A failed load leaves the catalog empty, which the
    wizard treats as nothing selectable.
    """

    def __init__(self, repo: DatasetRepository) -> None:
        self.repo = repo
        self.all_districts: list[District] = []
        self.states_in_order: list[str] = []
        self.error: str | None = None
        self._by_id: dict[str, District] = {}

    def load(self) -> "DistrictCatalog":
        try:
            rows = self.repo.list_districts()
        except LoadError as exc:
            logger.warning("catalog.load_failed error=%s", exc)
            self.error = str(exc)
            rows = []

        districts = [District.from_row(r) for r in rows]
        districts.sort(key=lambda d: (d.state, d.district_name))
        self.all_districts = districts
        self.states_in_order = list(dict.fromkeys(d.state for d in districts))
        self._by_id = {d.id: d for d in districts}
        logger.info("catalog.loaded districts=%d states=%d", len(districts), len(self.states_in_order))
        return self

    @property
    def is_empty(self) -> bool:
        return not self.all_districts

    def districts_for_state(self, state: str | None) -> list[District]:
        if not state:
            return []
        return [d for d in self.all_districts if d.state == state]

    def get(self, district_id: str | None) -> District | None:
        if not district_id:
            return None
        return self._by_id.get(str(district_id))
