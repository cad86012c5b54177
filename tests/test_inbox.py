from datetime import datetime, timedelta

from carmarket.models.models import Notification, ContactMessage
from carmarket.services import inbox as svc

from .utils import auth, make_user


T0 = datetime(2024, 5, 1, 12, 0, 0)


def _notification(db, user, minutes, is_read=False, type="default"):
    n = Notification(
        user_id=user.id,
        title=f"Note {minutes}",
        message="body",
        type=type,
        is_read=is_read,
        created_at=T0 + timedelta(minutes=minutes),
    )
    db.add(n)
    db.commit()
    return n


def _thread(db, user, minutes, status="unread", replies=0):
    root = ContactMessage(
        user_id=user.id,
        sender_id=user.id,
        name="Seller One",
        email=user.email,
        subject="Listing question",
        message="How do I feature my car?",
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
    )
    db.add(root)
    db.flush()
    for i in range(replies):
        db.add(
            ContactMessage(
                user_id=user.id,
                name="Support",
                email="support@example.com",
                message=f"reply {i}",
                status="unread",
                parent_message_id=root.id,
                created_at=T0 + timedelta(minutes=minutes + 100 + i),
            )
        )
    db.commit()
    return root


def test_inbox_merges_newest_first_and_nests_replies(client, db, seller):
    old = _notification(db, seller, 1)
    thread = _thread(db, seller, 5, replies=2)
    new = _notification(db, seller, 10, is_read=True)

    r = client.get("/inbox", headers=auth(seller))
    assert r.status_code == 200, r.text
    items = r.json()["items"]
    assert [(i["kind"], i["id"]) for i in items] == [
        ("notification", new.id),
        ("message_thread", thread.id),
        ("notification", old.id),
    ]
    assert [reply["message"] for reply in items[1]["replies"]] == ["reply 0", "reply 1"]
    assert r.json()["unread"] == 1


def test_read_filter_applies_to_both_kinds(client, db, seller):
    _notification(db, seller, 1, is_read=True)
    _notification(db, seller, 2, is_read=True)
    _notification(db, seller, 3, is_read=False)
    read_thread = _thread(db, seller, 4, status="read", replies=1)
    _thread(db, seller, 5, status="unread")

    items = client.get("/inbox?filter=read", headers=auth(seller)).json()["items"]
    kinds = [i["kind"] for i in items]
    assert kinds == ["message_thread", "notification", "notification"]
    assert items[0]["id"] == read_thread.id
    assert all(i["is_read"] for i in items)

    unread = client.get("/inbox?filter=unread", headers=auth(seller)).json()["items"]
    assert len(unread) == 2
    assert not any(i["is_read"] for i in unread)

    assert client.get("/inbox?filter=bogus", headers=auth(seller)).status_code == 422


def test_inbox_is_private(client, db, seller, buyer):
    _notification(db, buyer, 1)
    _thread(db, buyer, 2)
    assert client.get("/inbox", headers=auth(seller)).json() == {"items": [], "unread": 0}


def test_mark_read_and_mark_all_read(client, db, seller, buyer):
    a = _notification(db, seller, 1)
    _notification(db, seller, 2)
    _notification(db, seller, 3, is_read=True)
    foreign = _notification(db, buyer, 4)

    r = client.post(f"/inbox/notifications/{a.id}/read", headers=auth(seller))
    assert r.json() == {"id": a.id, "is_read": True}
    assert client.post(f"/inbox/notifications/{foreign.id}/read", headers=auth(seller)).status_code == 404

    assert client.post("/inbox/notifications/read-all", headers=auth(seller)).json() == {"updated": 1}
    assert client.post("/inbox/notifications/read-all", headers=auth(seller)).json() == {"updated": 0}
    assert client.get("/inbox/unread-count", headers=auth(seller)).json() == {"unread": 0}
    assert client.get("/inbox/unread-count", headers=auth(buyer)).json() == {"unread": 1}


def test_delete_notification(client, db, seller, buyer):
    n = _notification(db, seller, 1)
    assert client.delete(f"/inbox/notifications/{n.id}", headers=auth(buyer)).status_code == 404
    assert client.delete(f"/inbox/notifications/{n.id}", headers=auth(seller)).status_code == 200
    assert db.query(Notification).count() == 0


def test_contact_form_accepts_anonymous_and_signed_in(client, db, seller):
    form = {"name": "Visitor", "email": "visitor@example.com", "subject": "Hello", "message": "  Is this still for sale?  "}
    r = client.post("/contact", json=form)
    assert r.status_code == 200, r.text
    anon = db.get(ContactMessage, r.json()["id"])
    assert anon.user_id is None
    assert anon.message == "Is this still for sale?"
    assert anon.status == "unread"

    r = client.post("/contact", headers=auth(seller), json=form)
    signed = db.get(ContactMessage, r.json()["id"])
    assert signed.user_id == seller.id

    assert client.post("/contact", json={**form, "email": "nope"}).status_code == 422


def test_admin_reply_threads_and_notifies(client, db, seller, admin):
    root = _thread(db, seller, 1)
    r = client.post(f"/admin/messages/{root.id}/reply", headers=auth(admin), json={"message": "Use the feature button."})
    assert r.status_code == 200, r.text
    first = r.json()
    assert first["parent_message_id"] == root.id

    # Replying to a reply still hangs off the root
    r = client.post(f"/admin/messages/{first['id']}/reply", headers=auth(admin), json={"message": "Anything else?"})
    assert r.json()["parent_message_id"] == root.id

    db.expire_all()
    # The thread stays unread for the user until someone marks it read
    assert db.get(ContactMessage, root.id).status == "unread"
    child = db.get(ContactMessage, first["id"])
    assert child.user_id == seller.id
    assert child.sender_id == admin.id
    assert child.subject == "Re: Listing question"

    notes = db.query(Notification).filter(Notification.user_id == seller.id).all()
    assert [n.type for n in notes] == ["contact_reply", "contact_reply"]

    items = client.get("/inbox", headers=auth(seller)).json()["items"]
    threads = [i for i in items if i["kind"] == "message_thread"]
    assert len(threads) == 1
    assert [reply["message"] for reply in threads[0]["replies"]] == ["Use the feature button.", "Anything else?"]

    unread = client.get("/inbox?filter=unread", headers=auth(seller)).json()["items"]
    assert root.id in [i["id"] for i in unread if i["kind"] == "message_thread"]


def test_reply_to_anonymous_message_sends_no_notification(db, admin):
    anon = ContactMessage(name="Visitor", email="v@example.com", message="hi", status="unread")
    db.add(anon)
    db.commit()
    svc.reply(db, admin, anon.id, "Thanks")
    assert db.query(Notification).count() == 0


def test_admin_message_management(client, db, seller, admin):
    root = _thread(db, seller, 1, replies=2)
    other = make_user(db, "other@example.com")
    _thread(db, other, 2, status="read")

    listed = client.get("/admin/messages?status=unread", headers=auth(admin)).json()
    assert listed["total"] == 1
    assert listed["items"][0]["id"] == root.id
    assert len(listed["items"][0]["replies"]) == 2

    r = client.patch(f"/admin/messages/{root.id}", headers=auth(admin), json={"status": "read"})
    assert r.json() == {"id": root.id, "status": "read"}
    assert client.patch(f"/admin/messages/{root.id}", headers=auth(admin), json={"status": "archived"}).status_code == 422

    assert client.delete(f"/admin/messages/{root.id}", headers=auth(admin)).status_code == 200
    assert db.query(ContactMessage).filter(ContactMessage.user_id == seller.id).count() == 0
    assert client.get("/admin/messages", headers=auth(seller)).status_code == 403
