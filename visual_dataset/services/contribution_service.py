from __future__ import annotations

import logging
import secrets
import string
import time
from threading import RLock, Timer
from typing import Callable

from pydantic import ValidationError

from visual_dataset.config import settings
from visual_dataset.contracts.payloads import SubmissionInsert
from visual_dataset.domain import wizard
from visual_dataset.domain.models import Coordinates, District, ImageUpload, Submission
from visual_dataset.domain.wizard import (
    IdentifyingContributor,
    Submitted,
    Submitting,
    WizardState,
)
from visual_dataset.infra.exif_location import read_exif_coordinates
from visual_dataset.infra.repositories import DatasetRepository, UploadError
from visual_dataset.services.catalog_service import DistrictCatalog

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}
ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}
FAILURE_MESSAGE = "Failed to submit. Please try again."
TOKEN_ALPHABET = string.digits + string.ascii_lowercase


class ImageRejected(ValueError):
    pass


def validate_image(image: ImageUpload, max_bytes: int | None = None) -> ImageUpload:
    limit = settings.max_image_bytes if max_bytes is None else max_bytes
    if image.size == 0:
        raise ImageRejected("Image file is empty")
    if image.size > limit:
        raise ImageRejected(f"Image is larger than {limit // (1024 * 1024)}MB")
    content_type = (image.content_type or "").lower()
    if content_type not in ALLOWED_CONTENT_TYPES and image.extension not in ALLOWED_EXTENSIONS:
        raise ImageRejected("Only JPG, PNG and WEBP images are accepted")
    return image


def random_token(length: int = 6) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def build_storage_path(district: District, file_name: str, epoch_ms: int, token: str) -> str:
    ext = ImageUpload(file_name=file_name, content=b"").extension
    return f"{district.state}/{district.district_name}/{epoch_ms}-{token}.{ext}"


class ContributionService:
    """Runs the upload-then-insert transaction for a wizard in ``Submitting``.

    The two writes are not atomic. An upload failure leaves nothing behind;
    an insert failure leaves the uploaded blob without a record. Such paths
    are logged and kept in ``orphaned_paths`` for ``scripts/reconcile_orphans.py``.
    """

    def __init__(
        self,
        repo: DatasetRepository,
        *,
        wall_clock: Callable[[], float] = time.time,
        clock: Callable[[], float] = time.monotonic,
        token_factory: Callable[[], str] = random_token,
        reset_delay_seconds: float | None = None,
    ) -> None:
        self.repo = repo
        self.wall_clock = wall_clock
        self.clock = clock
        self.token_factory = token_factory
        self.reset_delay_seconds = (
            settings.reset_delay_seconds if reset_delay_seconds is None else reset_delay_seconds
        )
        self.orphaned_paths: list[str] = []

    def submit(self, state: Submitting) -> Submitted | IdentifyingContributor:
        request = state.request
        coords = request.coordinates
        try:
            payload = SubmissionInsert(
                district_id=request.district.id,
                image_url="pending-upload",
                description=request.description,
                contributor_name=request.contributor_name,
                contributor_contact=request.contributor_contact,
                latitude=coords.latitude if coords else None,
                longitude=coords.longitude if coords else None,
            )
        except ValidationError as exc:
            logger.warning("submission.rejected_client_side errors=%d", exc.error_count())
            return wizard.submission_failed(state, wizard.MISSING_FIELDS_MESSAGE)

        path = build_storage_path(
            request.district,
            request.image.file_name,
            int(self.wall_clock() * 1000),
            self.token_factory(),
        )

        try:
            self.repo.upload_blob(path, request.image.content, request.image.content_type or None)
        except UploadError as exc:
            logger.warning("submission.upload_failed path=%s error=%s", path, exc)
            return wizard.submission_failed(state, FAILURE_MESSAGE)

        try:
            image_url = self.repo.public_url(path)
            row = payload.model_copy(update={"image_url": image_url}).model_dump()
            created = self.repo.insert_submission(row)
        except Exception as exc:
            # The blob is already stored; any failure from here on orphans it.
            self.orphaned_paths.append(path)
            logger.error("submission.insert_failed orphaned_path=%s error=%s", path, exc)
            return wizard.submission_failed(state, FAILURE_MESSAGE)

        created.setdefault(
            "districts",
            {
                "id": request.district.id,
                "state": request.district.state,
                "district_name": request.district.district_name,
            },
        )
        submission = Submission.from_row(created)
        logger.info(
            "submission.created id=%s district=%s gps=%s",
            submission.id,
            request.district.district_name,
            coords is not None,
        )
        return wizard.submission_succeeded(state, submission, self.clock(), self.reset_delay_seconds)


class ContributionSession:
    """One contributor's wizard for the lifetime of a view.

    Owns the current wizard state and the post-success reset timer. ``close``
    must be called when the view is torn down so a pending reset never fires
    against a dead view.
    """

    def __init__(self, service: ContributionService, catalog: DistrictCatalog) -> None:
        self.service = service
        self.catalog = catalog
        self._lock = RLock()
        self._state: WizardState = wizard.reset()
        self._timer: Timer | None = None

    @property
    def state(self) -> WizardState:
        with self._lock:
            return self._state

    def _apply(self, fn: Callable[..., WizardState], *args) -> WizardState:
        with self._lock:
            self._state = fn(self._state, *args)
            return self._state

    def select_state(self, state_name: str) -> WizardState:
        return self._apply(wizard.select_state, state_name)

    def select_district(self, district_id: str | None) -> WizardState:
        district = self.catalog.get(district_id)
        return self._apply(wizard.select_district, district)

    def choose_image(self, image: ImageUpload) -> WizardState:
        validate_image(image)
        return self._apply(wizard.choose_image, image)

    def clear_image(self) -> WizardState:
        return self._apply(wizard.clear_image)

    def capture_location(self, provider: Callable[[], Coordinates | None] | None = None) -> bool:
        with self._lock:
            state = self._state
            if not isinstance(state, wizard.CapturingImage):
                raise wizard.WizardStepError("GPS capture is only available while choosing an image")
            if provider is None:
                image = state.draft.image
                if image is None:
                    return False
                content = image.content

                def provider() -> Coordinates | None:
                    return read_exif_coordinates(content)

            try:
                coords = provider()
            except Exception as exc:
                logger.info("gps.capture_failed error=%s", exc)
                return False
            if coords is None:
                return False
            self._state = wizard.record_location(state, coords)
            return True

    def set_description(self, text: str) -> WizardState:
        return self._apply(wizard.set_description, text)

    def set_contributor(self, name: str, contact: str = "") -> WizardState:
        return self._apply(wizard.set_contributor, name, contact)

    def advance(self) -> WizardState:
        with self._lock:
            if isinstance(self._state, IdentifyingContributor):
                return self.submit()
            return self._apply(wizard.advance)

    def back(self) -> WizardState:
        return self._apply(wizard.back)

    def submit(self) -> WizardState:
        with self._lock:
            nxt = wizard.advance(self._state)
            if not isinstance(nxt, Submitting):
                self._state = nxt
                return nxt
            self._state = nxt
            try:
                outcome = self.service.submit(nxt)
            except Exception:
                logger.exception("submission.unexpected_error")
                outcome = wizard.submission_failed(nxt, FAILURE_MESSAGE)
            self._state = outcome
            if isinstance(outcome, Submitted):
                self._schedule_reset(max(outcome.reset_at - self.service.clock(), 0.0))
            return outcome

    def _schedule_reset(self, delay: float) -> None:
        self._cancel_timer()
        timer = Timer(delay, self._auto_reset)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _auto_reset(self) -> None:
        with self._lock:
            if isinstance(self._state, Submitted):
                self._state = wizard.reset()
            self._timer = None

    def refresh(self) -> WizardState:
        with self._lock:
            self._state = wizard.expire(self._state, self.service.clock())
            if not isinstance(self._state, Submitted):
                self._cancel_timer()
            return self._state

    def reset_remaining(self) -> float:
        with self._lock:
            if not isinstance(self._state, Submitted):
                return 0.0
            return max(self._state.reset_at - self.service.clock(), 0.0)

    def reset(self) -> WizardState:
        with self._lock:
            self._cancel_timer()
            self._state = wizard.reset()
            return self._state

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        with self._lock:
            self._cancel_timer()
