from book_requests import (
    create_book_request,
    get_user_book_requests,
    list_book_requests,
    update_book_request_status,
)
from models import RequestStatus
from results import NOT_FOUND, VALIDATION


def test_submit_request(make_user, notifier):
    user = make_user()

    result = create_book_request(user.id, "Gödel, Escher, Bach", author="Hofstadter")
    assert result.success
    assert result.data["request"]["status"] == RequestStatus.PENDING
    assert result.data["request"]["genre"] is None
    assert "Book Request: Gödel, Escher, Bach - Received" in notifier.subjects(user.email)


def test_submit_for_unknown_user(app):
    assert create_book_request(404, "Anything").kind == NOT_FOUND


def test_status_update_notifies_reader(make_user, notifier):
    user = make_user()
    request_id = create_book_request(user.id, "Piranesi").data["request"]["id"]

    result = update_book_request_status(request_id, "approved", "Ordered two copies")
    assert result.success
    assert result.data["request"]["status"] == RequestStatus.APPROVED
    assert result.data["request"]["admin_note"] == "Ordered two copies"

    _, subject, body = notifier.sent[-1]
    assert subject == "Book Request Status Update: Piranesi"
    assert "Ordered two copies" in body


def test_status_update_validation(make_user):
    request_id = create_book_request(make_user().id, "Piranesi").data["request"]["id"]
    assert update_book_request_status(request_id, "SHELVED").kind == VALIDATION
    assert update_book_request_status(404, "APPROVED").kind == NOT_FOUND


def test_listings(make_user):
    reader = make_user()
    create_book_request(reader.id, "Piranesi", genre="Fantasy")
    create_book_request(reader.id, "Hyperion", genre="Science Fiction")

    assert len(get_user_book_requests(reader.id).data["requests"]) == 2

    found = list_book_requests(query="fantasy")
    assert [r["title"] for r in found.data["requests"]] == ["Piranesi"]
    assert found.data["requests"][0]["user"]["fullname"] == reader.fullname
