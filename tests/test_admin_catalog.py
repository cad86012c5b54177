from carmarket.config import settings
from carmarket.models.models import AdminLog, CarReport, ContactMessage, WebsiteSetting

from .utils import auth, make_car, make_dealership, png_bytes


def test_role_change_is_logged(client, db, seller, admin):
    r = client.patch(f"/admin/users/{seller.id}/role", headers=auth(admin), json={"role": "dealer"})
    assert r.status_code == 200, r.text
    assert r.json()["role"] == "dealer"

    log = db.query(AdminLog).one()
    assert log.action_type == "update_user_role"
    assert log.changes == {"role": {"before": "normal_user", "after": "dealer"}}
    assert log.admin_id == admin.id

    assert client.patch(f"/admin/users/{seller.id}/role", headers=auth(admin), json={"role": "owner"}).status_code == 422
    assert client.patch("/admin/users/not-a-uuid/role", headers=auth(admin), json={"role": "dealer"}).status_code == 404


def test_admin_cannot_demote_or_deactivate_self(client, admin):
    assert client.patch(f"/admin/users/{admin.id}/role", headers=auth(admin), json={"role": "dealer"}).status_code == 403
    assert client.patch(f"/admin/users/{admin.id}/active", headers=auth(admin), json={"is_active": False}).status_code == 403


def test_deactivated_user_loses_access(client, db, seller, admin):
    assert client.get("/inbox", headers=auth(seller)).status_code == 200
    r = client.patch(f"/admin/users/{seller.id}/active", headers=auth(admin), json={"is_active": False})
    assert r.json()["is_active"] is False
    assert client.get("/inbox", headers=auth(seller)).status_code == 401


def test_user_search(client, db, seller, buyer, admin):
    body = client.get("/admin/users?q=seller", headers=auth(admin)).json()
    assert [u["email"] for u in body["items"]] == ["seller@example.com"]
    body = client.get("/admin/users?role=admin", headers=auth(admin)).json()
    assert body["total"] == 1


def test_dashboard_counts(client, db, seller, buyer, admin, catalog):
    make_dealership(db, seller, status="pending")
    car = make_car(db, seller, catalog, status="Approved")
    make_car(db, seller, catalog, status="Pending")
    db.add(CarReport(car_id=car.id, user_id=buyer.id, reason="spam", status="pending"))
    db.add(ContactMessage(name="Visitor", email="v@example.com", message="hello", status="unread"))
    db.commit()

    body = client.get("/admin/dashboard", headers=auth(admin)).json()
    assert body["users"] == 3
    assert body["dealers"] == 0
    assert body["dealerships"] == {"pending": 1}
    assert body["cars"] == {"Approved": 1, "Pending": 1}
    assert body["pending_reports"] == 1
    assert body["unread_messages"] == 1


def test_report_review(client, db, seller, buyer, admin, catalog):
    car = make_car(db, seller, catalog)
    r = client.post(f"/cars/{car.id}/reports", headers=auth(buyer), json={"reason": "fake", "country_code": "QA"})
    assert r.status_code == 200, r.text
    report_id = r.json()["id"]
    assert r.json()["country_code"] == "qa"

    listed = client.get("/admin/reports?status=pending&country_code=qa", headers=auth(admin)).json()
    assert [item["id"] for item in listed["items"]] == [report_id]

    r = client.patch(f"/admin/reports/{report_id}", headers=auth(admin), json={"status": "resolved", "notes": "removed"})
    assert r.json()["status"] == "resolved"
    assert db.query(AdminLog).filter(AdminLog.action_type == "update_report_status").count() == 1
    assert client.get("/admin/reports?status=pending", headers=auth(admin)).json()["total"] == 0


def test_admin_car_list_filters(client, db, seller, admin, catalog):
    make_car(db, seller, catalog, status="Pending", description="Clean title")
    make_car(db, seller, catalog, status="Approved")
    body = client.get("/admin/cars?status=Pending", headers=auth(admin)).json()
    assert body["total"] == 1
    assert client.get("/admin/cars?q=camry", headers=auth(admin)).json()["total"] == 2
    assert client.get("/admin/cars?status=Archived", headers=auth(admin)).status_code == 422


def test_brand_and_model_crud(client, db, admin, seller, catalog):
    r = client.post("/admin/catalog/brands", headers=auth(admin), json={"name": "Lexus", "name_ar": "لكزس"})
    assert r.status_code == 200, r.text
    lexus = r.json()
    assert client.post("/admin/catalog/brands", headers=auth(admin), json={"name": "Lexus"}).status_code == 409

    model = client.post("/admin/catalog/models", headers=auth(admin), json={"brand_id": lexus["id"], "name": "LX"}).json()
    assert [m["name"] for m in client.get(f"/brands/{lexus['id']}/models").json()] == ["LX"]

    renamed = client.put(f"/admin/catalog/models/{model['id']}", headers=auth(admin), json={"name": "LX 600"}).json()
    assert renamed["name"] == "LX 600"

    assert client.delete(f"/admin/catalog/models/{model['id']}", headers=auth(admin)).status_code == 200
    assert client.delete(f"/admin/catalog/brands/{lexus['id']}", headers=auth(admin)).status_code == 200

    make_car(db, seller, catalog)
    assert client.delete(f"/admin/catalog/brands/{catalog['brand'].id}", headers=auth(admin)).status_code == 409
    assert client.delete(f"/admin/catalog/models/{catalog['model'].id}", headers=auth(admin)).status_code == 409
    assert client.post("/admin/catalog/brands", headers=auth(seller), json={"name": "Kia"}).status_code == 403


def test_brand_logo_upload(client, db, admin, catalog, storage, monkeypatch):
    brand_id = catalog["brand"].id
    files = {"file": ("toyota.png", png_bytes(), "image/png")}
    r = client.post(f"/admin/catalog/brands/{brand_id}/logo", headers=auth(admin), files=files)
    assert r.status_code == 200, r.text
    url = r.json()["logo_url"]
    assert "/storage/brand-logos/" in url

    served = client.get("/" + url.split("://", 1)[1].split("/", 1)[1])
    assert served.status_code == 200
    assert served.content == png_bytes()

    monkeypatch.setattr(settings, "max_logo_bytes", 16)
    files = {"file": ("toyota.png", png_bytes(), "image/png")}
    assert client.post(f"/admin/catalog/brands/{brand_id}/logo", headers=auth(admin), files=files).status_code == 400


def test_countries_and_cities(client, db, admin, catalog):
    assert [c["code"] for c in client.get("/countries").json()] == ["qa"]

    r = client.post(
        "/admin/catalog/countries",
        headers=auth(admin),
        json={"code": "SA", "name": "Saudi Arabia", "currency_code": "sar", "phone_code": "+966"},
    )
    assert r.status_code == 200, r.text
    saudi = r.json()
    assert (saudi["code"], saudi["currency_code"]) == ("sa", "SAR")
    assert client.post("/admin/catalog/countries", headers=auth(admin), json={"code": "sa", "name": "Dup", "currency_code": "SAR"}).status_code == 409

    city = client.post("/admin/catalog/cities", headers=auth(admin), json={"country_id": saudi["id"], "name": "Riyadh"}).json()
    assert [c["name"] for c in client.get("/countries/sa/cities").json()] == ["Riyadh"]

    client.put(f"/admin/catalog/cities/{city['id']}", headers=auth(admin), json={"is_active": False})
    assert client.get("/countries/sa/cities").json() == []

    client.put(f"/admin/catalog/countries/{saudi['id']}", headers=auth(admin), json={"is_active": False})
    assert client.get("/countries/sa/cities").status_code == 404
    assert len(client.get("/admin/catalog/countries", headers=auth(admin)).json()) == 3


def test_currency_rate_upsert(client, db, admin):
    first = client.put("/admin/catalog/currency-rates", headers=auth(admin), json={"from_currency": "qar", "to_currency": "usd", "rate": "0.2747"})
    assert first.json() == {"from_currency": "QAR", "to_currency": "USD", "rate": 0.2747}
    client.put("/admin/catalog/currency-rates", headers=auth(admin), json={"from_currency": "QAR", "to_currency": "USD", "rate": "0.275"})
    rates = client.get("/currency-rates?base=qar").json()
    assert rates == [{"from_currency": "QAR", "to_currency": "USD", "rate": 0.275}]


def test_website_settings(client, db, admin):
    assert client.get("/settings/contact").status_code == 404
    value = {"phone": "+97444000000", "whatsapp": "+97455000000"}
    r = client.put("/admin/catalog/settings/contact", headers=auth(admin), json={"value": value})
    assert r.json() == {"key": "contact", "value": value}
    assert client.get("/settings/contact").json()["value"] == value
    assert db.query(WebsiteSetting).count() == 1
    assert db.query(AdminLog).filter(AdminLog.action_type == "update_setting").count() == 1


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
