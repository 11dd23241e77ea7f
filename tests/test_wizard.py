from __future__ import annotations

import pytest

from visual_dataset.domain import wizard
from visual_dataset.domain.models import Coordinates, District, ImageUpload, Submission
from visual_dataset.domain.states import SubmissionStatus
from visual_dataset.domain.wizard import (
    CapturingImage,
    Describing,
    IdentifyingContributor,
    SelectingLocation,
    Submitted,
    Submitting,
    WizardStepError,
)

BLR = District(id="d-blr", state="Karnataka", district_name="Bengaluru Urban")
EKM = District(id="d-ekm", state="Kerala", district_name="Ernakulam")
IMAGE = ImageUpload(file_name="photo.jpg", content=b"\xff\xd8data", content_type="image/jpeg")


def at_image_step() -> CapturingImage:
    state = wizard.select_state(wizard.reset(), "Karnataka")
    state = wizard.select_district(state, BLR)
    return wizard.advance(state)


def at_description_step() -> Describing:
    return wizard.advance(wizard.choose_image(at_image_step(), IMAGE))


def at_contributor_step(description: str = "Durga Puja pandal") -> IdentifyingContributor:
    return wizard.advance(wizard.set_description(at_description_step(), description))


def test_location_guard_requires_state_and_district():
    state = wizard.reset()
    assert not wizard.can_advance(state)
    assert wizard.advance(state) is state

    state = wizard.select_state(state, "Karnataka")
    assert not wizard.can_advance(state)

    state = wizard.select_district(state, BLR)
    assert wizard.can_advance(state)
    nxt = wizard.advance(state)
    assert isinstance(nxt, CapturingImage)
    assert nxt.district == BLR


def test_selecting_state_always_clears_district():
    state = wizard.select_district(wizard.select_state(wizard.reset(), "Karnataka"), BLR)
    assert state.draft.district == BLR

    assert wizard.select_state(state, "Kerala").draft.district is None
    assert wizard.select_state(state, "Karnataka").draft.district is None


def test_district_from_another_state_is_refused():
    state = wizard.select_state(wizard.reset(), "Karnataka")
    with pytest.raises(WizardStepError):
        wizard.select_district(state, EKM)


def test_image_guard():
    state = at_image_step()
    assert not wizard.can_advance(state)
    assert wizard.advance(state) is state

    state = wizard.choose_image(state, IMAGE)
    assert wizard.can_advance(state)

    state = wizard.clear_image(state)
    assert not wizard.can_advance(state)


@pytest.mark.parametrize(
    "length, allowed",
    [(0, False), (9, False), (10, True), (250, True), (500, True)],
)
def test_description_guard_bounds(length, allowed):
    state = wizard.set_description(at_description_step(), "x" * length)
    assert wizard.can_advance(state) is allowed
    assert isinstance(wizard.advance(state), IdentifyingContributor) is allowed


def test_description_is_truncated_at_500():
    state = wizard.set_description(at_description_step(), "y" * 501)
    assert len(state.draft.description) == 500
    assert wizard.can_advance(state)


def test_contributor_guard_and_submitting():
    state = at_contributor_step()
    assert not wizard.can_advance(state)

    state = wizard.set_contributor(state, "   ")
    assert not wizard.can_advance(state)

    state = wizard.set_contributor(state, "Asha")
    nxt = wizard.advance(state)
    assert isinstance(nxt, Submitting)
    assert nxt.request.contributor_name == "Asha"
    assert nxt.request.contributor_contact is None
    assert nxt.request.district == BLR
    assert nxt.request.description == "Durga Puja pandal"

    # Already submitting: no further advance.
    assert not wizard.can_advance(nxt)
    assert wizard.advance(nxt) is nxt


def test_back_then_forward_keeps_every_field():
    state = wizard.record_location(wizard.choose_image(at_image_step(), IMAGE), Coordinates(12.97, 77.59))
    state = wizard.set_description(wizard.advance(state), "Mysuru Dasara procession")
    state = wizard.set_contributor(wizard.advance(state), "Asha", "asha@example.org")
    before = state.draft

    for _ in range(3):
        state = wizard.back(state)
    assert isinstance(state, SelectingLocation)
    assert state.draft == before

    for _ in range(3):
        state = wizard.advance(state)
    assert isinstance(state, IdentifyingContributor)
    assert state.draft == before
    assert state.image == IMAGE
    assert state.description == "Mysuru Dasara procession"


def test_back_on_first_step_is_a_no_op():
    state = wizard.reset()
    assert wizard.back(state) is state


def test_edits_outside_their_step_raise():
    with pytest.raises(WizardStepError):
        wizard.set_description(wizard.reset(), "some description")
    with pytest.raises(WizardStepError):
        wizard.choose_image(at_description_step(), IMAGE)
    with pytest.raises(WizardStepError):
        wizard.record_location(at_contributor_step(), Coordinates(1.0, 2.0))
    with pytest.raises(WizardStepError):
        wizard.select_state(at_image_step(), "Kerala")


def test_step_numbers():
    assert wizard.step_number(wizard.reset()) == 1
    assert wizard.step_number(at_image_step()) == 2
    assert wizard.step_number(at_description_step()) == 3
    assert wizard.step_number(at_contributor_step()) == 4


def _submission() -> Submission:
    return Submission(
        id="s-1",
        district_id=BLR.id,
        image_url="memory://x",
        description="Durga Puja pandal",
        contributor_name="Asha",
        status=SubmissionStatus.PENDING,
        submitted_at="2026-01-01T00:00:00+00:00",
    )


def test_failure_returns_to_contributor_step_with_draft():
    submitting = wizard.advance(wizard.set_contributor(at_contributor_step(), "Asha"))
    failed = wizard.submission_failed(submitting, "Failed to submit. Please try again.")
    assert isinstance(failed, IdentifyingContributor)
    assert failed.error == "Failed to submit. Please try again."
    assert failed.draft.contributor_name == "Asha"
    assert failed.image == IMAGE

    # Retrying clears the error.
    retry = wizard.advance(failed)
    assert isinstance(retry, Submitting)


def test_submitted_expires_into_a_fresh_wizard():
    submitting = wizard.advance(wizard.set_contributor(at_contributor_step(), "Asha"))
    done = wizard.submission_succeeded(submitting, _submission(), now=100.0, delay=3.0)
    assert isinstance(done, Submitted)
    assert done.reset_at == 103.0

    assert wizard.expire(done, 102.9) is done
    fresh = wizard.expire(done, 103.0)
    assert fresh == SelectingLocation()


def test_editing_contributor_clears_failure_banner():
    submitting = wizard.advance(wizard.set_contributor(at_contributor_step(), "Asha"))
    failed = wizard.submission_failed(submitting, "Failed to submit. Please try again.")

    edited = wizard.set_contributor(failed, "Asha K")

    assert edited.error is None
    assert edited.draft.contributor_name == "Asha K"
