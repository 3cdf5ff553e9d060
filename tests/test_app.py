from datetime import timedelta

import pytest

from models import BookHold, BorrowRecord, BorrowStatus, HoldStatus, User, UserStatus, db, utcnow


def test_add_and_search_books(client):
    resp = client.post("/api/books", json={"title": "Beloved", "author": "Toni Morrison", "total_copies": 2})
    assert resp.status_code == 201
    assert resp.get_json()["book"]["available_copies"] == 2

    resp = client.get("/api/books?q=morrison")
    assert resp.status_code == 200
    assert [b["title"] for b in resp.get_json()["books"]] == ["Beloved"]


def test_invalid_form_is_400(client):
    resp = client.post("/api/books", json={"author": "Nobody", "total_copies": -1})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["kind"] == "validation"
    assert set(body["errors"]) == {"title", "total_copies"}


def test_unknown_book_is_404(client):
    resp = client.get("/api/books/404")
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "error": "Book not found", "kind": "not_found"}


def test_register_user(client):
    resp = client.post(
        "/api/users", json={"fullname": "Ada", "email": "not-an-email", "university_id": 7}
    )
    assert resp.status_code == 400
    assert "email" in resp.get_json()["errors"]

    resp = client.post(
        "/api/users", json={"fullname": "Ada", "email": "ada@example.edu", "university_id": 7}
    )
    assert resp.status_code == 201
    assert resp.get_json()["user"]["status"] == UserStatus.PENDING


def test_borrow_and_return_over_http(client, make_user, make_book):
    user = make_user()
    book = make_book(total=1)

    resp = client.post("/api/borrows", json={"user_id": user.id, "book_id": book.id})
    assert resp.status_code == 201
    borrow_id = resp.get_json()["borrow"]["id"]

    resp = client.post("/api/borrows", json={"user_id": user.id, "book_id": book.id})
    assert resp.status_code == 400
    assert resp.get_json()["already_borrowed"] is True

    resp = client.patch(f"/api/admin/borrows/{borrow_id}/status", json={"status": "RETURNED"})
    assert resp.status_code == 200

    resp = client.patch(f"/api/admin/borrows/{borrow_id}/status", json={"status": "RETURNED"})
    assert resp.status_code == 409
    assert resp.get_json()["status"] == BorrowStatus.RETURNED


def test_eligibility_read_then_block(client, make_user, make_book, make_borrow):
    user = make_user()
    make_borrow(user, make_book(), due_in_days=-1, status=BorrowStatus.OVERDUE)

    resp = client.get(f"/api/users/{user.id}/eligibility")
    assert resp.status_code == 200
    assert resp.get_json()["is_eligible"] is False

    db.session.expire_all()
    assert db.session.get(User, user.id).status == UserStatus.BLOCKED


def test_hold_checkout(client, make_user, make_book):
    book = make_book(total=1)
    user = make_user()
    hold = BookHold(
        user_id=user.id,
        book_id=book.id,
        status=HoldStatus.READY,
        notification_date=utcnow(),
        expiry_date=utcnow() + timedelta(days=3),
    )
    db.session.add(hold)
    db.session.commit()
    hold_id = hold.id

    resp = client.post(f"/api/holds/{hold_id}/checkout")
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["hold"]["status"] == HoldStatus.FULFILLED
    assert body["borrow"]["book_id"] == book.id

    resp = client.post(f"/api/holds/{hold_id}/checkout")
    assert resp.status_code == 409


def test_fine_waive_form_requires_reason(client, admin, make_user, make_book, make_borrow, make_fine):
    fine = make_fine(make_borrow(make_user(), make_book(), status=BorrowStatus.RETURNED))

    resp = client.post(f"/api/admin/fines/{fine.id}/waive", json={"admin_id": admin.id})
    assert resp.status_code == 400

    resp = client.post(
        f"/api/admin/fines/{fine.id}/waive", json={"admin_id": admin.id, "reason": "goodwill"}
    )
    assert resp.status_code == 200
    assert resp.get_json()["borrowing_restored"] is True


def test_extension_request_over_http(client, make_user, make_book, make_borrow):
    record = make_borrow(make_user(), make_book())
    wanted = (record.due_date + timedelta(days=4)).isoformat()

    resp = client.post(
        "/api/extension-requests",
        json={"user_id": record.user_id, "borrow_record_id": record.id, "requested_due_date": wanted},
    )
    assert resp.status_code == 201
    request_id = resp.get_json()["extension"]["id"]

    resp = client.post(
        f"/api/admin/extension-requests/{request_id}/decision", json={"status": "APPROVED"}
    )
    assert resp.status_code == 200
    assert resp.get_json()["extension"]["status"] == "APPROVED"


def test_room_search_and_booking(client, make_user):
    client.post("/api/admin/rooms", json={"room_number": "P-1", "capacity": 1})
    start = (utcnow() + timedelta(days=1)).replace(minute=0, second=0, microsecond=0)
    end = start + timedelta(hours=1)
    fmt = "%Y-%m-%dT%H:%M"

    resp = client.get(
        "/api/rooms/available",
        query_string={"start_time": start.strftime(fmt), "end_time": end.strftime(fmt)},
    )
    assert resp.status_code == 200
    room_id = resp.get_json()["rooms"][0]["id"]

    user = make_user()
    resp = client.post(
        f"/api/rooms/{room_id}/bookings",
        json={"user_id": user.id, "start_time": start.strftime(fmt), "end_time": end.strftime(fmt)},
    )
    assert resp.status_code == 201

    resp = client.get("/api/rooms/available", query_string={"start_time": "tomorrow"})
    assert resp.status_code == 400


def test_cron_requires_secret(app, client, make_user, make_book, make_borrow):
    app.config["CRON_SECRET"] = "s3cret"
    record = make_borrow(make_user(), make_book(), due_in_days=-2)

    assert client.post("/api/cron/update-fines").status_code == 401

    resp = client.post("/api/cron/update-fines", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200
    assert resp.get_json()["overdue"]["updated_count"] == 1

    db.session.expire_all()
    assert db.session.get(BorrowRecord, record.id).status == BorrowStatus.OVERDUE


@pytest.mark.parametrize("path", ["/api/cron/expire-holds", "/api/cron/process-bookings"])
def test_cron_endpoints_open_without_secret(client, path):
    resp = client.get(path)
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True


def test_cli_sweeps(app, make_user, make_book, make_borrow):
    make_borrow(make_user(), make_book(), due_in_days=-2)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["sweep-overdue"])
    assert "Processed 1 overdue books and created fines" in result.output

    result = runner.invoke(args=["run-sweeps"])
    assert result.exit_code == 0
    assert "No new overdue books found" in result.output
    assert "Bookings processed" in result.output


def test_review_over_http(client, make_user, make_book, make_borrow):
    user, book = make_user(), make_book()
    make_borrow(user, book, status=BorrowStatus.RETURNED)

    resp = client.post(f"/api/books/{book.id}/reviews", json={"user_id": user.id, "rating": 9})
    assert resp.status_code == 400
    assert "rating" in resp.get_json()["errors"]

    resp = client.post(f"/api/books/{book.id}/reviews", json={"user_id": user.id, "rating": 4})
    assert resp.status_code == 201

    resp = client.get(f"/api/books/{book.id}/reviews")
    assert resp.get_json()["average_rating"] == 4


def test_library_messages_over_http(client, make_user, admin):
    user = make_user()
    resp = client.post(
        "/api/library-messages", json={"user_id": user.id, "subject": "Wifi", "message": "Password?"}
    )
    assert resp.status_code == 201
    message_id = resp.get_json()["library_message"]["id"]

    assert client.post(f"/api/admin/library-messages/{message_id}/read").status_code == 200
    assert client.post(f"/api/admin/library-messages/{message_id}/read").status_code == 409

    resp = client.post(
        f"/api/admin/library-messages/{message_id}/reply",
        json={"admin_id": admin.id, "admin_response": "Ask at the desk."},
    )
    assert resp.status_code == 200

    resp = client.get(f"/api/users/{user.id}/library-messages")
    assert resp.get_json()["library_messages"][0]["status"] == "REPLIED"

    resp = client.get("/api/admin/library-messages", query_string={"status": "replied"})
    assert resp.get_json()["metadata"]["total_count"] == 1


def test_admin_user_management_over_http(client, make_user, make_book, make_borrow):
    user = make_user(fullname="Ada Lovelace")
    make_borrow(user, make_book())

    resp = client.get("/api/admin/users", query_string={"q": "ada"})
    assert resp.status_code == 200
    assert resp.get_json()["users"][0]["total_borrowed_books"] == 1

    assert client.delete(f"/api/admin/users/{user.id}").status_code == 400
    assert client.delete("/api/admin/users/404").status_code == 404
    assert client.delete(f"/api/admin/users/{make_user().id}").status_code == 200


def test_delete_book_over_http(client, make_user, make_book, make_borrow):
    on_loan = make_book()
    make_borrow(make_user(), on_loan)

    assert client.delete(f"/api/books/{on_loan.id}").status_code == 400
    assert client.delete(f"/api/books/{make_book().id}").status_code == 200
    assert client.delete("/api/books/404").status_code == 404


def test_borrow_unknown_book_is_404(client, make_user):
    resp = client.post("/api/borrows", json={"user_id": make_user().id, "book_id": 404})
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Book not found"
