"""Contribution wizard as a tagged state machine.

Each step is a frozen dataclass. Every variant carries the ``Draft`` (all
data entered so far, kept across Back/Forward) plus the values that earlier
steps have already validated, so a step can never read a field that is not
valid for it. Transition functions return the next variant and never mutate
their input.

Forward moves are gated by the guard of the current step; a failing guard
leaves the state unchanged rather than raising.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Union

from visual_dataset.domain.models import Coordinates, District, ImageUpload, Submission

DESCRIPTION_MIN = 10
DESCRIPTION_MAX = 500

MISSING_FIELDS_MESSAGE = "Please fill all required fields"

STEP_TITLES = {
    1: "Select Location",
    2: "Upload Image",
    3: "Add Description",
    4: "Your Details",
}


class WizardStepError(ValueError):
    pass


@dataclass(frozen=True)
class Draft:
    state_name: str = ""
    district: District | None = None
    image: ImageUpload | None = None
    coordinates: Coordinates | None = None
    description: str = ""
    contributor_name: str = ""
    contributor_contact: str = ""


@dataclass(frozen=True)
class SubmissionRequest:
    district: District
    image: ImageUpload
    description: str
    contributor_name: str
    contributor_contact: str | None = None
    coordinates: Coordinates | None = None


@dataclass(frozen=True)
class SelectingLocation:
    draft: Draft = field(default_factory=Draft)


@dataclass(frozen=True)
class CapturingImage:
    draft: Draft
    district: District


@dataclass(frozen=True)
class Describing:
    draft: Draft
    district: District
    image: ImageUpload


@dataclass(frozen=True)
class IdentifyingContributor:
    draft: Draft
    district: District
    image: ImageUpload
    description: str
    error: str | None = None


@dataclass(frozen=True)
class Submitting:
    draft: Draft
    request: SubmissionRequest


@dataclass(frozen=True)
class Submitted:
    submission: Submission
    reset_at: float


WizardState = Union[
    SelectingLocation,
    CapturingImage,
    Describing,
    IdentifyingContributor,
    Submitting,
    Submitted,
]


# Guards


def location_chosen(draft: Draft) -> bool:
    return bool(draft.state_name) and draft.district is not None and draft.district.state == draft.state_name


def image_chosen(draft: Draft) -> bool:
    return draft.image is not None


def description_valid(draft: Draft) -> bool:
    return DESCRIPTION_MIN <= len(draft.description) <= DESCRIPTION_MAX


def contributor_named(draft: Draft) -> bool:
    return bool(draft.contributor_name.strip())


GUARDS: dict[type, Callable[[Draft], bool]] = {
    SelectingLocation: location_chosen,
    CapturingImage: image_chosen,
    Describing: description_valid,
    IdentifyingContributor: contributor_named,
}


def can_advance(state: WizardState) -> bool:
    guard = GUARDS.get(type(state))
    if guard is None:
        return False
    return guard(state.draft)  # type: ignore[union-attr]


def step_number(state: WizardState) -> int:
    if isinstance(state, SelectingLocation):
        return 1
    if isinstance(state, CapturingImage):
        return 2
    if isinstance(state, Describing):
        return 3
    return 4


def reset() -> SelectingLocation:
    return SelectingLocation()


def _require(state: WizardState, expected: type, action: str):
    if not isinstance(state, expected):
        raise WizardStepError(f"{action} is not available at step {type(state).__name__}")
    return state


# Field edits. Each one is owned by exactly one step.


def select_state(state: WizardState, state_name: str) -> SelectingLocation:
    current = _require(state, SelectingLocation, "select_state")
    # A district from a previously selected state is never kept.
    return SelectingLocation(replace(current.draft, state_name=state_name or "", district=None))


def select_district(state: WizardState, district: District | None) -> SelectingLocation:
    current = _require(state, SelectingLocation, "select_district")
    if district is not None and district.state != current.draft.state_name:
        raise WizardStepError(
            f"District {district.district_name!r} does not belong to state {current.draft.state_name!r}"
        )
    return SelectingLocation(replace(current.draft, district=district))


def choose_image(state: WizardState, image: ImageUpload) -> CapturingImage:
    current = _require(state, CapturingImage, "choose_image")
    return replace(current, draft=replace(current.draft, image=image))


def clear_image(state: WizardState) -> CapturingImage:
    current = _require(state, CapturingImage, "clear_image")
    return replace(current, draft=replace(current.draft, image=None))


def record_location(state: WizardState, coordinates: Coordinates | None) -> CapturingImage:
    current = _require(state, CapturingImage, "record_location")
    return replace(current, draft=replace(current.draft, coordinates=coordinates))


def set_description(state: WizardState, text: str) -> Describing:
    current = _require(state, Describing, "set_description")
    return replace(current, draft=replace(current.draft, description=(text or "")[:DESCRIPTION_MAX]))


def set_contributor(state: WizardState, name: str, contact: str = "") -> IdentifyingContributor:
    current = _require(state, IdentifyingContributor, "set_contributor")
    draft = replace(current.draft, contributor_name=name or "", contributor_contact=contact or "")
    return replace(current, draft=draft, error=None)


# Navigation


def advance(state: WizardState) -> WizardState:
    if not can_advance(state):
        return state

    if isinstance(state, SelectingLocation):
        district = state.draft.district
        return CapturingImage(state.draft, district) if district is not None else state
    if isinstance(state, CapturingImage):
        image = state.draft.image
        return Describing(state.draft, state.district, image) if image is not None else state
    if isinstance(state, Describing):
        return IdentifyingContributor(state.draft, state.district, state.image, state.draft.description)
    if isinstance(state, IdentifyingContributor):
        return _begin_submit(state)
    return state


def _begin_submit(state: IdentifyingContributor) -> WizardState:
    draft = state.draft
    # Earlier steps are re-checked against the values that will be sent.
    checked = replace(draft, district=state.district, image=state.image, description=state.description)
    if not all(guard(checked) for guard in GUARDS.values()):
        return replace(state, error=MISSING_FIELDS_MESSAGE)

    request = SubmissionRequest(
        district=state.district,
        image=state.image,
        description=state.description,
        contributor_name=draft.contributor_name.strip(),
        contributor_contact=draft.contributor_contact.strip() or None,
        coordinates=draft.coordinates,
    )
    return Submitting(draft, request)


def back(state: WizardState) -> WizardState:
    if isinstance(state, CapturingImage):
        return SelectingLocation(state.draft)
    if isinstance(state, Describing):
        return CapturingImage(state.draft, state.district)
    if isinstance(state, IdentifyingContributor):
        return Describing(state.draft, state.district, state.image)
    return state


# Submission outcome


def submission_succeeded(state: WizardState, submission: Submission, now: float, delay: float) -> Submitted:
    _require(state, Submitting, "submission_succeeded")
    return Submitted(submission=submission, reset_at=now + delay)


def submission_failed(state: WizardState, message: str) -> IdentifyingContributor:
    current = _require(state, Submitting, "submission_failed")
    request = current.request
    return IdentifyingContributor(
        draft=current.draft,
        district=request.district,
        image=request.image,
        description=request.description,
        error=message,
    )


def expire(state: WizardState, now: float) -> WizardState:
    if isinstance(state, Submitted) and now >= state.reset_at:
        return reset()
    return state
