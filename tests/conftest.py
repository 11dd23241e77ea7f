from __future__ import annotations

import io

import pytest
from PIL import Image

from visual_dataset.domain.models import ImageUpload
from visual_dataset.infra.repositories import InMemoryRepository
from visual_dataset.services.catalog_service import DistrictCatalog
from visual_dataset.services.contribution_service import ContributionService, ContributionSession

DISTRICTS = [
    {"id": "d-ekm", "state": "Kerala", "district_name": "Ernakulam"},
    {"id": "d-mys", "state": "Karnataka", "district_name": "Mysuru"},
    {"id": "d-tvm", "state": "Kerala", "district_name": "Thiruvananthapuram"},
    {"id": "d-blr", "state": "Karnataka", "district_name": "Bengaluru Urban"},
]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository(DISTRICTS)


@pytest.fixture
def catalog(repo) -> DistrictCatalog:
    return DistrictCatalog(repo).load()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(repo, clock) -> ContributionService:
    return ContributionService(
        repo,
        wall_clock=clock,
        clock=clock,
        token_factory=lambda: "abc123",
        reset_delay_seconds=3.0,
    )


@pytest.fixture
def session(service, catalog):
    s = ContributionSession(service, catalog)
    yield s
    s.close()


@pytest.fixture
def jpeg_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 120, 40)).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def image(jpeg_bytes) -> ImageUpload:
    return ImageUpload(file_name="pandal.JPG", content=jpeg_bytes, content_type="image/jpeg")
