from library_messages import (
    create_library_message,
    get_user_messages,
    list_library_messages,
    mark_message_as_read,
    reply_to_library_message,
)
from models import MessageStatus
from results import CONFLICT, NOT_FOUND, VALIDATION


def test_message_notifies_reader_and_admins(make_user, admin, notifier):
    user = make_user()

    result = create_library_message(user.id, "Opening hours", "Are you open on Sunday?")
    assert result.success
    assert result.data["library_message"]["status"] == MessageStatus.UNREAD
    assert notifier.subjects(admin.email) == ["New Library Message: Opening hours"]
    assert notifier.subjects(user.email) == ["Library Message Received: Opening hours"]


def test_message_from_unknown_user(app):
    assert create_library_message(404, "Hi", "Hello").kind == NOT_FOUND


def test_user_sees_only_their_messages(make_user):
    user, other = make_user(), make_user()
    create_library_message(user.id, "First", "One")
    create_library_message(user.id, "Second", "Two")
    create_library_message(other.id, "Elsewhere", "Three")

    result = get_user_messages(user.id)
    assert [m["subject"] for m in result.data["library_messages"]] == ["Second", "First"]


def test_admin_list_filters(make_user):
    user = make_user(fullname="Ada Lovelace")
    create_library_message(user.id, "Interlibrary loan", "Can you get a thesis?")
    second = create_library_message(user.id, "Printing", "Where is the printer?")
    mark_message_as_read(second.data["library_message"]["id"])

    result = list_library_messages(query="thesis")
    assert [m["subject"] for m in result.data["library_messages"]] == ["Interlibrary loan"]
    assert result.data["library_messages"][0]["user"]["fullname"] == "Ada Lovelace"

    result = list_library_messages(status="read")
    assert [m["subject"] for m in result.data["library_messages"]] == ["Printing"]
    assert result.data["metadata"]["total_count"] == 1


def test_reply_marks_replied_and_notifies(make_user, admin, notifier):
    user = make_user()
    message_id = create_library_message(user.id, "Fines", "Why was I fined?").data[
        "library_message"]["id"]

    result = reply_to_library_message(message_id, admin.id, "The book was returned late.")
    assert result.success
    assert result.data["library_message"]["status"] == MessageStatus.REPLIED
    assert result.data["library_message"]["admin_id"] == admin.id
    assert "Library Response: Fines" in notifier.subjects(user.email)


def test_only_admins_reply(make_user):
    user = make_user()
    message_id = create_library_message(user.id, "Q", "?").data["library_message"]["id"]

    assert reply_to_library_message(message_id, user.id, "Answer").kind == VALIDATION
    assert reply_to_library_message(404, user.id, "Answer").kind == NOT_FOUND


def test_mark_as_read_only_once(make_user):
    message_id = create_library_message(make_user().id, "Q", "?").data["library_message"]["id"]

    assert mark_message_as_read(message_id).success
    again = mark_message_as_read(message_id)
    assert again.kind == CONFLICT
    assert again.error == "Message is not unread"
    assert mark_message_as_read(404).kind == NOT_FOUND
