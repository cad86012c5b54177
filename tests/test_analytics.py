import json

import httpx
import pytest

from carmarket.models.models import AnalyticsEvent, PageView, UserPageView
from carmarket.services import analytics as svc
from carmarket.services.errors import ValidationFailed

from .utils import auth, make_car


IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148"
ANDROID_PHONE = "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Chrome/120.0 Mobile Safari/537.36"
ANDROID_TABLET = "Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
IPAD = "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148"
DESKTOP = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


@pytest.mark.parametrize(
    "ua, expected",
    [
        (IPHONE, "mobile"),
        (ANDROID_PHONE, "mobile"),
        (ANDROID_TABLET, "tablet"),
        (IPAD, "tablet"),
        (DESKTOP, "desktop"),
        (GOOGLEBOT, "bot"),
        (None, "desktop"),
    ],
)
def test_classify_device(ua, expected):
    assert svc.classify_device(ua) == expected


def test_resolve_language():
    assert svc.resolve_language("ar", "en-US,en;q=0.9") == "ar"
    assert svc.resolve_language(None, "en-US,en;q=0.9") == "en"
    assert svc.resolve_language("", "AR-qa") == "ar"
    assert svc.resolve_language(None, None) is None


def test_event_sets_session_cookie_and_tags(client):
    r = client.post(
        "/analytics/events",
        json={"event": "car_view", "data": {"car_id": 5}, "page_url": "/qa/cars/5"},
        headers={"User-Agent": IPHONE, "Accept-Language": "ar-QA,ar;q=0.9"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["device_type"] == "mobile"
    assert body["language"] == "ar"
    assert body["is_conversion"] is False
    assert r.cookies.get(svc.SESSION_COOKIE) == body["session_id"]

    again = client.post("/analytics/events", json={"event": "car_share"}).json()
    assert again["session_id"] == body["session_id"]


def test_conversions_carry_fixed_value(client, db, seller):
    r = client.post("/analytics/events", headers=auth(seller), json={"event": "contact_seller", "data": {"car_id": 1}})
    assert r.json()["is_conversion"] is True
    event = db.query(AnalyticsEvent).one()
    assert event.user_id == seller.id
    assert event.event_data["value"] == 10
    assert event.event_data["currency"] == "QAR"
    assert event.event_data["car_id"] == 1


def test_unknown_event_name_is_rejected(client, db):
    assert client.post("/analytics/events", json={"event": "launch_rocket"}).status_code == 400
    assert db.query(AnalyticsEvent).count() == 0


def test_page_view_counts_per_session(client, db):
    first = client.post("/analytics/page-view", json={"countryCode": "QA", "pageType": "car", "entityId": 12}).json()
    second = client.post("/analytics/page-view", json={"countryCode": "qa", "pageType": "car", "entityId": 12}).json()
    assert first["success"] is True
    assert (first["viewCount"], second["viewCount"]) == (1, 2)
    assert first["sessionId"] == second["sessionId"]

    client.cookies.clear()
    third = client.post("/analytics/page-view", json={"countryCode": "qa", "pageType": "car", "entityId": 12}).json()
    assert third["viewCount"] == 1
    assert third["sessionId"] != first["sessionId"]

    counter = db.query(PageView).one()
    assert (counter.country_code, counter.page_type, counter.view_count) == ("qa", "car", 3)
    assert db.query(UserPageView).filter(UserPageView.entity_id == "12").count() == 3


def test_measurement_protocol_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    client = svc.MeasurementProtocolClient(
        measurement_id="G-TEST", api_secret="s3cret", endpoint="https://ga.example/mp/collect",
        transport=httpx.MockTransport(handler),
    )
    assert client.send("session-1", "contact_seller", {"value": 10}, user_id="u-1") is True
    assert seen["params"] == {"measurement_id": "G-TEST", "api_secret": "s3cret"}
    assert seen["body"] == {
        "client_id": "session-1",
        "events": [{"name": "contact_seller", "params": {"value": 10}}],
        "user_id": "u-1",
    }


def test_measurement_protocol_failures_are_swallowed(db):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    client = svc.MeasurementProtocolClient(api_secret="s3cret", transport=httpx.MockTransport(handler))
    event = svc.record_event(db, "user_signup", None, session_id="sess", client=client)
    assert event.id is not None
    assert event.is_conversion is True
    assert len(calls) == 1

    def explode(request):
        raise httpx.ConnectError("unreachable", request=request)

    broken = svc.MeasurementProtocolClient(api_secret="s3cret", transport=httpx.MockTransport(explode))
    assert broken.send("sess", "page_view", {}) is False


def test_failed_forward_still_records_event_over_http(client, db, monkeypatch):
    def refuse(request):
        return httpx.Response(503)

    failing = svc.MeasurementProtocolClient(api_secret="s3cret", transport=httpx.MockTransport(refuse))
    monkeypatch.setattr(svc.settings, "analytics_forward", True)
    monkeypatch.setattr(svc, "MeasurementProtocolClient", lambda: failing)

    r = client.post("/analytics/events", json={"event": "contact_seller", "data": {"car_id": 1}})
    assert r.status_code == 200, r.text
    assert r.json()["is_conversion"] is True
    assert db.query(AnalyticsEvent).filter(AnalyticsEvent.event_type == "contact_seller").count() == 1


def test_no_secret_means_no_forward():
    def handler(request):
        raise AssertionError("should not be called")

    client = svc.MeasurementProtocolClient(api_secret=None, transport=httpx.MockTransport(handler))
    client.api_secret = None
    assert client.send("sess", "page_view", {}) is False


def test_record_event_validates_name(db):
    with pytest.raises(ValidationFailed):
        svc.record_event(db, "made_up", None, session_id="sess")


def test_admin_reports(client, db, seller, admin, catalog):
    for event in ("contact_seller", "contact_seller", "user_signup", "car_view"):
        client.post("/analytics/events", json={"event": event})
    for page in ("car", "car", "home"):
        client.post("/analytics/page-view", json={"countryCode": "qa", "pageType": page, "entityId": "7" if page == "car" else None})
    popular = make_car(db, seller, catalog, views=40)
    make_car(db, seller, catalog, views=3)

    conversions = client.get("/admin/analytics/conversions", headers=auth(admin)).json()
    assert conversions == {"by_event": {"contact_seller": 2, "user_signup": 1}, "total_value": 25, "currency": "QAR"}

    dist = client.get("/admin/analytics/events", headers=auth(admin)).json()
    assert dist[0] == {"event_type": "contact_seller", "count": 2}
    assert sum(row["count"] for row in dist) == 4

    timeline = client.get("/admin/analytics/events/timeline?days=7", headers=auth(admin)).json()
    assert sum(row["count"] for row in timeline) == 4

    pages = client.get("/admin/analytics/pages?country_code=QA", headers=auth(admin)).json()
    assert [(p["page_type"], p["view_count"]) for p in pages] == [("car", 2), ("home", 1)]

    entity = client.get("/admin/analytics/entities/car/7", headers=auth(admin)).json()
    assert entity["total_views"] == 2
    assert entity["unique_viewers"] == 1

    top = client.get("/admin/analytics/top-cars?limit=1", headers=auth(admin)).json()
    assert [(c["id"], c["views"], c["brand"]) for c in top] == [(popular.id, 40, "Toyota")]

    assert client.get("/admin/analytics/pages", headers=auth(seller)).status_code == 403
