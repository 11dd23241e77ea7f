from __future__ import annotations

import pytest

from visual_dataset.domain import wizard
from visual_dataset.domain.models import Coordinates, District, ImageUpload
from visual_dataset.domain.states import SubmissionStatus
from visual_dataset.infra.repositories import InMemoryRepository, InsertError, UploadError
from visual_dataset.services.catalog_service import DistrictCatalog
from visual_dataset.services.contribution_service import (
    FAILURE_MESSAGE,
    ContributionService,
    ContributionSession,
    ImageRejected,
    build_storage_path,
    random_token,
    validate_image,
)

from tests.conftest import DISTRICTS


class FailingUploadRepository(InMemoryRepository):
    def upload_blob(self, path, content, content_type=None):
        raise UploadError("bucket rejected the object")


class FailingInsertRepository(InMemoryRepository):
    def insert_submission(self, row):
        raise InsertError("row violates check constraint")


class BrokenPublicUrlRepository(InMemoryRepository):
    def public_url(self, path):
        raise RuntimeError("bucket misconfigured")


class IdlessInsertRepository(InMemoryRepository):
    def insert_submission(self, row):
        created = super().insert_submission(row)
        created.pop("id")
        return created


def fill_wizard(session: ContributionSession, image: ImageUpload, description: str = "Ganesh Chaturthi idol") -> None:
    session.select_state("Karnataka")
    session.select_district("d-blr")
    session.advance()
    session.choose_image(image)
    session.advance()
    session.set_description(description)
    session.advance()
    session.set_contributor("Asha")


def test_storage_path_is_namespaced_and_keeps_extension():
    district = District(id="d-blr", state="Karnataka", district_name="Bengaluru Urban")
    path = build_storage_path(district, "IMG_0001.JPEG", 1700000000123, "k3x9q0")
    assert path == "Karnataka/Bengaluru Urban/1700000000123-k3x9q0.jpeg"


def test_random_token_shape():
    token = random_token()
    assert len(token) == 6
    assert token.isalnum() and token == token.lower()


def test_validate_image_rejects_large_and_unknown_types():
    ok = ImageUpload(file_name="a.png", content=b"123", content_type="image/png")
    assert validate_image(ok, max_bytes=10) is ok

    with pytest.raises(ImageRejected):
        validate_image(ImageUpload(file_name="a.png", content=b"x" * 11, content_type="image/png"), max_bytes=10)
    with pytest.raises(ImageRejected):
        validate_image(ImageUpload(file_name="a.gif", content=b"123", content_type="image/gif"), max_bytes=10)
    with pytest.raises(ImageRejected):
        validate_image(ImageUpload(file_name="a.jpg", content=b"", content_type="image/jpeg"), max_bytes=10)


def test_end_to_end_submission(session, repo, image):
    fill_wizard(session, image, description="0123456789")
    outcome = session.submit()

    assert isinstance(outcome, wizard.Submitted)
    rows = repo.list_submissions()
    assert len(rows) == 1
    row = rows[0]
    assert row["status"] == SubmissionStatus.PENDING.value
    assert row["district_id"] == "d-blr"
    assert row["districts"]["district_name"] == "Bengaluru Urban"
    assert row["description"] == "0123456789"
    assert row["contributor_name"] == "Asha"
    assert row["contributor_contact"] is None
    assert row["latitude"] is None and row["longitude"] is None

    path = "Karnataka/Bengaluru Urban/1700000000000-abc123.jpg"
    assert repo.blob(path) == image.content
    assert row["image_url"] == repo.public_url(path)
    assert outcome.submission.district.district_name == "Bengaluru Urban"


def test_coordinates_are_stored(session, repo, image):
    session.select_state("Kerala")
    session.select_district("d-ekm")
    session.advance()
    session.choose_image(image)
    assert session.capture_location(lambda: Coordinates(9.9816, 76.2999))
    session.advance()
    session.set_description("Onam pookalam at a temple")
    session.advance()
    session.set_contributor("Meera", "meera@example.org")
    session.submit()

    row = repo.list_submissions()[0]
    assert row["latitude"] == pytest.approx(9.9816)
    assert row["longitude"] == pytest.approx(76.2999)
    assert row["contributor_contact"] == "meera@example.org"


def test_gps_failure_is_ignored(session, image):
    session.select_state("Karnataka")
    session.select_district("d-blr")
    session.advance()
    session.choose_image(image)

    def broken():
        raise RuntimeError("permission denied")

    assert session.capture_location(broken) is False
    # Plain JPEG without EXIF: nothing captured, still free to continue.
    assert session.capture_location() is False
    assert session.state.draft.coordinates is None
    assert wizard.can_advance(session.state)


def test_upload_failure_creates_nothing(clock, image):
    repo = FailingUploadRepository(DISTRICTS)
    session = ContributionSession(ContributionService(repo, wall_clock=clock, clock=clock), DistrictCatalog(repo).load())
    fill_wizard(session, image)

    outcome = session.submit()

    assert isinstance(outcome, wizard.IdentifyingContributor)
    assert outcome.error == FAILURE_MESSAGE
    assert outcome.draft.contributor_name == "Asha"
    assert repo.list_submissions() == []
    assert session.service.orphaned_paths == []
    session.close()


def test_insert_failure_leaves_one_orphan(clock, image):
    repo = FailingInsertRepository(DISTRICTS)
    service = ContributionService(repo, wall_clock=clock, clock=clock, token_factory=lambda: "zzz999")
    session = ContributionSession(service, DistrictCatalog(repo).load())
    fill_wizard(session, image)

    outcome = session.submit()

    assert isinstance(outcome, wizard.IdentifyingContributor)
    assert outcome.error == FAILURE_MESSAGE
    assert repo.list_submissions() == []
    orphan = "Karnataka/Bengaluru Urban/1700000000000-zzz999.jpg"
    assert repo.list_blobs("Karnataka/") == [orphan]
    assert service.orphaned_paths == [orphan]
    session.close()


def test_retry_after_failure_does_not_need_earlier_steps(repo, clock, image):
    tokens = iter(["first1", "second"])
    service = ContributionService(repo, wall_clock=clock, clock=clock, token_factory=lambda: next(tokens))
    session = ContributionSession(service, DistrictCatalog(repo).load())
    fill_wizard(session, image)
    original_upload = repo.upload_blob
    calls = {"n": 0}

    def flaky_upload(path, content, content_type=None):
        calls["n"] += 1
        if calls["n"] == 1:
            raise UploadError("timeout")
        return original_upload(path, content, content_type)

    repo.upload_blob = flaky_upload
    assert isinstance(session.submit(), wizard.IdentifyingContributor)
    assert isinstance(session.submit(), wizard.Submitted)
    assert len(repo.list_submissions()) == 1
    session.close()


def test_submit_is_refused_without_a_name(session, repo, image):
    fill_wizard(session, image)
    session.set_contributor("")
    outcome = session.submit()
    assert isinstance(outcome, wizard.IdentifyingContributor)
    assert repo.list_submissions() == []


def test_refresh_resets_after_delay(session, clock, image):
    start = clock.now
    fill_wizard(session, image)
    session.submit()
    assert session.reset_remaining() == pytest.approx(3.0)

    clock.now = start + 2.5
    assert isinstance(session.refresh(), wizard.Submitted)

    clock.now = start + 3.0
    assert session.refresh() == wizard.SelectingLocation()


def test_timer_resets_wizard(repo, image):
    service = ContributionService(repo, reset_delay_seconds=0.01)
    session = ContributionSession(service, DistrictCatalog(repo).load())
    fill_wizard(session, image)
    session.submit()
    timer = session._timer
    assert timer is not None

    timer.join(timeout=2)

    assert session.state == wizard.SelectingLocation()


def test_close_cancels_pending_reset(repo, image):
    service = ContributionService(repo, reset_delay_seconds=60)
    session = ContributionSession(service, DistrictCatalog(repo).load())
    fill_wizard(session, image)
    session.submit()
    timer = session._timer

    session.close()
    timer.join(timeout=2)

    assert not timer.is_alive()
    assert isinstance(session.state, wizard.Submitted)


def test_gps_capture_outside_image_step_is_refused(session):
    with pytest.raises(wizard.WizardStepError):
        session.capture_location(lambda: Coordinates(1.0, 1.0))


def test_public_url_failure_returns_to_contributor_step(clock, image):
    repo = BrokenPublicUrlRepository(DISTRICTS)
    service = ContributionService(repo, wall_clock=clock, clock=clock, token_factory=lambda: "url001")
    session = ContributionSession(service, DistrictCatalog(repo).load())
    fill_wizard(session, image)

    outcome = session.submit()

    assert isinstance(outcome, wizard.IdentifyingContributor)
    assert outcome.error == FAILURE_MESSAGE
    assert repo.list_submissions() == []
    assert service.orphaned_paths == ["Karnataka/Bengaluru Urban/1700000000000-url001.jpg"]
    assert isinstance(session.back(), wizard.Describing)
    session.close()


def test_unexpected_error_after_insert_keeps_wizard_interactive(clock, image):
    repo = IdlessInsertRepository(DISTRICTS)
    session = ContributionSession(ContributionService(repo, wall_clock=clock, clock=clock), DistrictCatalog(repo).load())
    fill_wizard(session, image)

    outcome = session.submit()

    assert isinstance(outcome, wizard.IdentifyingContributor)
    assert outcome.error == FAILURE_MESSAGE
    assert isinstance(session.state, wizard.IdentifyingContributor)
    assert isinstance(session.advance(), wizard.IdentifyingContributor)
    session.close()
