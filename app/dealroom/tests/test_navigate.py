from __future__ import annotations

import pytest

from dealroom.errors import AdvanceNotFound, ValidationBlocked
from dealroom.fallback_policy import FallbackRunContext
from dealroom.automation.autofill import FormAutofiller
from dealroom.automation.documents import is_deal_room_page
from dealroom.automation.navigate import NavigationAdvancer, NavigationOptions, advance, validate_page
from dealroom.pipeline.form_data import DataBucket
from dealroom.schemas import PlatformConfig

SITE = {
    "/gate": """
        <form action="/step2" method="get">
          <label for="em">Email</label><input id="em" name="email" type="email" required>
          <label><input type="checkbox" name="terms" required> I agree to the Terms of Use</label>
          <button type="submit">Continue</button>
        </form>
    """,
    "/step2": """
        <form action="/room" method="get">
          <label for="co">Company</label><input id="co" name="company" required>
          <button type="submit">Request Access</button>
        </form>
    """,
    "/room": """
        <h1>Downtown Portfolio</h1>
        <button>Download (12 KB)</button>
    """,
}


def _serve_site(page, start: str = "/gate"):
    def handle(route) -> None:
        path = "/" + route.request.url.split("://", 1)[1].split("/", 1)[1].split("?", 1)[0]
        body = SITE.get(path)
        if body is None:
            route.fulfill(status=404, body="not found")
        else:
            route.fulfill(status=200, content_type="text/html", body=body)

    page.route("https://forms.example.test/**", handle)
    page.goto(f"https://forms.example.test{start}", wait_until="domcontentloaded")
    return page


def test_validate_page_reports_required_fields(serve) -> None:
    page = serve(SITE["/gate"])
    issues = validate_page(page, settle_ms=0)
    labels = {issue.label for issue in issues}
    assert "Email" in labels
    assert all(issue.kind == "native" for issue in issues)
    page.fill("#em", "jane@example.com")
    page.check('input[name="terms"]')
    assert validate_page(page, settle_ms=0) == []


def test_inline_error_container(serve) -> None:
    page = serve('<input id="x" value="ok"><div class="field-error">Please enter a valid phone</div>')
    issues = validate_page(page, settle_ms=0)
    assert [issue.kind for issue in issues] == ["inline_error"]
    assert issues[0].message == "Please enter a valid phone"


def test_runs_multi_step_gate_until_deal_room(page) -> None:
    _serve_site(page)
    autofiller = FormAutofiller(DataBucket({"email": "jane@example.com", "company": "Acme Capital"}))
    report = NavigationAdvancer(autofiller).run(page, NavigationOptions(max_steps=3), stop_when=is_deal_room_page)
    assert report.stopped_reason == "target_reached"
    assert len(report.steps) == 2
    assert report.total_filled == 2
    assert report.steps[0].consents == 1
    assert report.steps[0].advance["navigated"]
    assert page.url.startswith("https://forms.example.test/room")
    assert report.as_dict()["total_filled"] == 2


def test_blocks_on_unfillable_required_field(serve) -> None:
    page = serve(
        """
        <form action="/next">
          <label for="ssn">Social Security Number</label><input id="ssn" required>
          <button type="submit">Submit</button>
        </form>
        """
    )
    autofiller = FormAutofiller(DataBucket({"email": "jane@example.com"}))
    with pytest.raises(ValidationBlocked) as excinfo:
        NavigationAdvancer(autofiller).run(page, NavigationOptions(max_steps=2))
    assert excinfo.value.issues[0]["label"] == "Social Security Number"
    assert page.url == "https://forms.example.test/gate"


def test_missing_advance_control_stops_run(serve) -> None:
    page = serve("<p>Thanks for registering.</p>")
    report = NavigationAdvancer(FormAutofiller(DataBucket({}))).run(page, NavigationOptions(max_steps=2))
    assert report.advance_not_found
    assert report.stopped_reason == "advance_not_found"
    with pytest.raises(AdvanceNotFound):
        advance(page)


def test_in_place_submit_is_not_fatal(serve) -> None:
    page = serve(
        """
        <form onsubmit="event.preventDefault(); document.getElementById('msg').textContent = 'Thanks'">
          <button type="submit">Send</button>
        </form>
        <p id="msg"></p>
        """
    )
    result = advance(page, navigation_timeout_ms=500)
    assert result.clicked
    assert not result.navigated
    assert page.text_content("#msg") == "Thanks"


def test_escalation_never_overwrites_user_text(serve) -> None:
    page = serve(
        """
        <form action="/next">
          <label for="em">Email</label><input id="em" type="email" value="jane@" aria-invalid="true">
          <button type="submit">Submit</button>
        </form>
        """
    )
    autofiller = FormAutofiller(DataBucket({"email": "jane@example.com"}))
    platform = PlatformConfig(name="forms", url_patterns=[r"forms\.example\.test"])
    advancer = NavigationAdvancer(autofiller, platform=platform, fallback_ctx=FallbackRunContext(max_steps=2))
    options = NavigationOptions(max_steps=1, escalate=True)
    with pytest.raises(ValidationBlocked) as excinfo:
        advancer.run(page, options)
    assert page.input_value("#em") == "jane@"
    assert excinfo.value.issues[0]["has_value"] is True
    assert advancer.fallback_ctx.steps_used == 0
    assert options.autofill.platform is None
    assert options.consent.platform is None
