from __future__ import annotations

import time

import pandas as pd
import streamlit as st

from visual_dataset.config import settings
from visual_dataset.domain import wizard
from visual_dataset.domain.models import Coordinates, ImageUpload
from visual_dataset.domain.states import SubmissionStatus
from visual_dataset.infra.repositories import RepositoryError, build_repository
from visual_dataset.logging_setup import configure_logging
from visual_dataset.services.catalog_service import DistrictCatalog
from visual_dataset.services.contribution_service import (
    ContributionService,
    ContributionSession,
    ImageRejected,
)
from visual_dataset.services.review_service import (
    ALL,
    FilterCriteria,
    ReviewService,
    apply_filters,
    states_of,
    status_totals,
)


st.set_page_config(page_title="India Visual Dataset", page_icon="📷", layout="wide")
configure_logging(settings.log_level)


@st.cache_resource
def get_repository():
    return build_repository()


repo, using_supabase, repo_error = get_repository()

if "mode" not in st.session_state:
    st.session_state.mode = "home"


def _set_mode(mode: str) -> None:
    session = st.session_state.get("contribution")
    if mode != "contributor" and session is not None:
        session.close()
        del st.session_state["contribution"]
    st.session_state.mode = mode


def render_home() -> None:
    st.title("India Visual Dataset")
    st.caption("Building AI that understands India's cultural richness")
    st.write(
        f"Help us collect {settings.coverage_target} approved images per district across all Indian districts."
    )

    left, right = st.columns(2)
    with left:
        st.subheader("Contribute Images")
        st.write("Upload images from your district with descriptions to help train AI models.")
        st.button("Get Started", type="primary", use_container_width=True, on_click=_set_mode, args=("contributor",))
    with right:
        st.subheader("Admin Dashboard")
        st.write("Review submissions, monitor coverage, and manage the image collection process.")
        st.button("View Dashboard", use_container_width=True, on_click=_set_mode, args=("admin",))

    with st.expander("Environment status", expanded=False):
        st.write(
            {
                "APP_ENV": settings.app_env,
                "SUPABASE_URL_VALID": settings.supabase_url_valid(),
                "SUPABASE_KEY_PRESENT": settings.supabase_key_present(),
                "STORAGE_BUCKET": settings.storage_bucket,
                "PERSISTENCE": "Supabase" if using_supabase else f"In-memory fallback ({repo_error})",
            }
        )


def _contribution_session() -> ContributionSession:
    if "contribution" not in st.session_state:
        catalog = DistrictCatalog(repo).load()
        st.session_state.contribution = ContributionSession(ContributionService(repo), catalog)
    return st.session_state.contribution


def render_contributor() -> None:
    session = _contribution_session()
    state = session.refresh()

    st.button("← Home", on_click=_set_mode, args=("home",))
    st.title("Contribute to India's Visual Dataset")
    st.caption("Help AI understand India's cultural richness")

    if isinstance(state, wizard.Submitted):
        st.success("Submission Successful! Thank you for contributing. Your submission is under review.")
        time.sleep(session.reset_remaining())
        session.refresh()
        st.rerun()
        return

    current = wizard.step_number(state)
    st.progress(current / len(wizard.STEP_TITLES), text=f"Step {current} of {len(wizard.STEP_TITLES)}")
    st.header(wizard.STEP_TITLES[current])

    if isinstance(state, wizard.SelectingLocation):
        _render_location_step(session, state)
    elif isinstance(state, wizard.CapturingImage):
        _render_image_step(session, state)
    elif isinstance(state, wizard.Describing):
        _render_description_step(session, state)
    elif isinstance(state, wizard.IdentifyingContributor):
        _render_contributor_step(session, state)


def _nav(session: ContributionSession, state: wizard.WizardState, *, label: str = "Continue", show_back: bool = True) -> None:
    back_col, next_col = st.columns(2)
    if show_back:
        with back_col:
            if st.button("Back", use_container_width=True, disabled=isinstance(state, wizard.Submitting)):
                session.back()
                st.rerun()
    with next_col:
        if st.button(label, type="primary", use_container_width=True, disabled=not wizard.can_advance(state)):
            with st.spinner("Submitting..." if isinstance(state, wizard.IdentifyingContributor) else "Loading..."):
                session.advance()
            st.rerun()


def _render_location_step(session: ContributionSession, state: wizard.SelectingLocation) -> None:
    catalog = session.catalog
    if catalog.is_empty:
        st.warning("No districts are available right now.")

    options = [""] + catalog.states_in_order
    chosen_state = st.selectbox(
        "State",
        options,
        index=options.index(state.draft.state_name) if state.draft.state_name in options else 0,
        format_func=lambda s: s or "Select State",
    )
    if chosen_state != state.draft.state_name:
        state = session.select_state(chosen_state)

    districts = catalog.districts_for_state(state.draft.state_name)
    district_ids = [""] + [d.id for d in districts]
    current_id = state.draft.district.id if state.draft.district else ""
    chosen_id = st.selectbox(
        "District",
        district_ids,
        index=district_ids.index(current_id) if current_id in district_ids else 0,
        format_func=lambda i: catalog.get(i).district_name if catalog.get(i) else "Select District",
        disabled=not state.draft.state_name,
    )
    if chosen_id != current_id:
        state = session.select_district(chosen_id or None)

    _nav(session, state, show_back=False)


def _render_image_step(session: ContributionSession, state: wizard.CapturingImage) -> None:
    image = state.draft.image
    if image is None:
        uploaded = st.file_uploader("Click to upload or capture image", type=["jpg", "jpeg", "png", "webp"])
        st.caption(f"JPG, PNG, WEBP (max {settings.max_image_bytes // (1024 * 1024)}MB)")
        if uploaded is not None:
            try:
                state = session.choose_image(
                    ImageUpload(file_name=uploaded.name, content=uploaded.getvalue(), content_type=uploaded.type or "")
                )
                st.rerun()
            except ImageRejected as exc:
                st.error(str(exc))
    else:
        st.image(image.content, caption=image.file_name, use_container_width=True)
        if st.button("Change"):
            session.clear_image()
            st.rerun()

    coords = state.draft.coordinates
    if st.button("Location Captured" if coords else "Capture GPS Location (Optional)", use_container_width=True):
        if session.capture_location():
            st.rerun()
        st.info("No GPS position found in this photo. You can enter it below or skip.")

    with st.expander("Enter GPS manually (optional)"):
        lat = st.number_input("Latitude", min_value=-90.0, max_value=90.0, value=coords.latitude if coords else 0.0, format="%.6f")
        lng = st.number_input("Longitude", min_value=-180.0, max_value=180.0, value=coords.longitude if coords else 0.0, format="%.6f")
        if st.button("Use these coordinates"):
            session.capture_location(lambda: Coordinates(latitude=lat, longitude=lng))
            st.rerun()

    _nav(session, session.state)


def _render_description_step(session: ContributionSession, state: wizard.Describing) -> None:
    text = st.text_area(
        "Image Description *",
        value=state.draft.description,
        placeholder="Describe what's in the image, cultural significance, location details...",
        max_chars=wizard.DESCRIPTION_MAX,
        height=140,
    )
    if text != state.draft.description:
        state = session.set_description(text)
    st.caption(f"{len(state.draft.description)}/{wizard.DESCRIPTION_MAX} characters (minimum {wizard.DESCRIPTION_MIN})")
    _nav(session, state)


def _render_contributor_step(session: ContributionSession, state: wizard.IdentifyingContributor) -> None:
    name = st.text_input("Your Name *", value=state.draft.contributor_name, placeholder="Enter your name")
    contact = st.text_input(
        "Contact (Optional)", value=state.draft.contributor_contact, placeholder="Email or phone number"
    )
    if name != state.draft.contributor_name or contact != state.draft.contributor_contact:
        state = session.set_contributor(name, contact)

    st.markdown("#### Review Submission")
    st.write(f"**Location:** {state.district.label}")
    st.write(f"**Description:** {state.description[:100]}...")
    st.write(f"**GPS:** {'Captured' if state.draft.coordinates else 'Not captured'}")

    if state.error:
        st.error(state.error)

    _nav(session, state, label="Submit")


def render_admin() -> None:
    st.button("← Home", on_click=_set_mode, args=("home",))
    st.title("Admin Dashboard")
    st.caption("Review and manage image submissions")

    service = ReviewService(repo)
    snapshot = service.load()
    for err in snapshot.errors:
        st.error(err)

    totals = status_totals(snapshot.submissions)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total", totals["total"])
    c2.metric("Pending", totals[SubmissionStatus.PENDING.value])
    c3.metric("Approved", totals[SubmissionStatus.APPROVED.value])
    c4.metric("Rejected", totals[SubmissionStatus.REJECTED.value])

    gallery_tab, coverage_tab = st.tabs(["Gallery", "Coverage"])

    with gallery_tab:
        f1, f2, f3 = st.columns([2, 1, 1])
        with f1:
            search = st.text_input("Search submissions...", value="")
        with f2:
            status = st.selectbox("Status", [ALL] + [s.value for s in SubmissionStatus], format_func=str.title)
        with f3:
            state_name = st.selectbox("State", [ALL] + states_of(snapshot.submissions))

        criteria = FilterCriteria(status=status, state=state_name, search=search)
        visible = apply_filters(snapshot.submissions, criteria)

        if not visible:
            st.info("No submissions found.")
        else:
            df = pd.DataFrame(
                [
                    {
                        "id": s.id,
                        "state": s.state_name,
                        "district": s.district_name,
                        "status": s.status.value,
                        "contributor": s.contributor_name,
                        "description": s.description,
                        "gps": "yes" if s.coordinates else "no",
                        "submitted_at": s.submitted_at,
                    }
                    for s in visible
                ]
            )
            st.dataframe(df, use_container_width=True, hide_index=True)
            _render_detail(service, visible)

    with coverage_tab:
        if not snapshot.coverage:
            st.info("No coverage data yet.")
        else:
            df = pd.DataFrame(
                [
                    {
                        "State": agg.district.state if agg.district else "",
                        "District": agg.district.district_name if agg.district else "",
                        "Total": agg.total,
                        "Pending": agg.pending,
                        "Approved": agg.approved,
                        "Rejected": agg.rejected,
                        "Progress": round(service.progress(agg) * 100, 1),
                    }
                    for agg in snapshot.coverage
                ]
            )
            st.dataframe(
                df,
                use_container_width=True,
                hide_index=True,
                column_config={
                    "Progress": st.column_config.ProgressColumn(
                        f"Progress (of {service.target})", min_value=0.0, max_value=100.0, format="%.1f%%"
                    )
                },
            )


def _render_detail(service: ReviewService, visible: list) -> None:
    selected_id = st.selectbox(
        "Select submission",
        [s.id for s in visible],
        format_func=lambda i: next((f"{s.district_name} · {s.contributor_name} · {s.status.value}" for s in visible if s.id == i), i),
    )
    selected = next((s for s in visible if s.id == selected_id), None)
    if selected is None:
        return

    left, right = st.columns([1, 1])
    with left:
        if selected.image_url:
            st.image(selected.image_url, use_container_width=True)
    with right:
        st.write(f"**Location:** {selected.district_name}, {selected.state_name}")
        st.write(f"**Description:** {selected.description}")
        st.write(f"**Contributor:** {selected.contributor_name}")
        if selected.contributor_contact:
            st.write(f"**Contact:** {selected.contributor_contact}")
        if selected.coordinates:
            st.write(f"**GPS:** {selected.latitude:.6f}, {selected.longitude:.6f}")
        st.write(f"**Status:** {selected.status.value}")
        st.write(f"**Submitted:** {selected.submitted_at}")
        if selected.admin_notes:
            st.write(f"**Admin notes:** {selected.admin_notes}")

        if selected.status == SubmissionStatus.PENDING:
            notes = st.text_area("Admin Notes (Optional)", key=f"notes-{selected.id}")
            a1, a2 = st.columns(2)
            for col, target, label in (
                (a1, SubmissionStatus.APPROVED, "Approve"),
                (a2, SubmissionStatus.REJECTED, "Reject"),
            ):
                with col:
                    if st.button(label, use_container_width=True, key=f"{label}-{selected.id}"):
                        try:
                            service.review(selected.id, target, notes)
                        except (RepositoryError, ValueError) as exc:
                            st.error(str(exc))
                        else:
                            st.rerun()


if st.session_state.mode == "contributor":
    render_contributor()
elif st.session_state.mode == "admin":
    render_admin()
else:
    render_home()
