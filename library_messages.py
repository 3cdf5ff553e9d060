"""Ask-a-librarian messages: readers write in, admins read and reply."""

import logging

from flask import current_app

from models import LibraryMessage, MessageStatus, Role, User, db
from notifications import send_notification
from results import ActionResult, action

logger = logging.getLogger(__name__)


@action("Failed to submit your message. Please try again.")
def create_library_message(user_id, subject, message):
    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")

    note = LibraryMessage(
        user_id=user_id, subject=subject, message=message, status=MessageStatus.UNREAD
    )
    db.session.add(note)
    db.session.commit()
    logger.info("User %s sent library message %s", user_id, note.id)

    for admin in User.query.filter_by(role=Role.ADMIN).order_by(User.id):
        send_notification(
            admin.email,
            f"New Library Message: {subject}",
            "Hello Admin,\n"
            f"A new message has been submitted to the library by {user.fullname}.\n"
            f"Subject: {subject}\n{message}\n"
            "Please log into the admin dashboard to respond to this message.",
        )
    send_notification(
        user.email,
        f"Library Message Received: {subject}",
        f"Hi {user.fullname},\n"
        "We have received your message to the library.\n"
        f"Subject: {subject}\n{message}\n"
        "A librarian will review your message and respond as soon as possible.",
    )
    return ActionResult.ok("Message sent", library_message=note.to_dict())


@action("Failed to fetch your messages.")
def get_user_messages(user_id):
    messages = (
        LibraryMessage.query.filter_by(user_id=user_id)
        .order_by(LibraryMessage.created_at.desc(), LibraryMessage.id.desc())
        .all()
    )
    return ActionResult.ok(library_messages=[m.to_dict() for m in messages])


@action("Failed to fetch messages.")
def list_library_messages(query=None, status=None, page=1):
    q = LibraryMessage.query
    if query and query.strip():
        pattern = f"%{query.strip()}%"
        q = q.filter(LibraryMessage.subject.ilike(pattern) | LibraryMessage.message.ilike(pattern))
    if status:
        q = q.filter(LibraryMessage.status == status.upper())
    pagination = q.order_by(LibraryMessage.created_at.desc(), LibraryMessage.id.desc()).paginate(
        page=page, per_page=current_app.config["ITEMS_PER_PAGE"], error_out=False
    )
    return ActionResult.ok(
        library_messages=[
            dict(
                m.to_dict(),
                user={"id": m.user.id, "fullname": m.user.fullname, "email": m.user.email},
            )
            for m in pagination.items
        ],
        metadata={
            "current_page": page,
            "total_pages": pagination.pages,
            "total_count": pagination.total,
            "has_next_page": pagination.has_next,
        },
    )


@action("Failed to send your response. Please try again.")
def reply_to_library_message(message_id, admin_id, admin_response):
    note = db.session.get(LibraryMessage, message_id)
    if note is None:
        return ActionResult.not_found("Message")
    admin = db.session.get(User, admin_id)
    if admin is None or admin.role != Role.ADMIN:
        return ActionResult.fail("Only librarians can reply to messages")

    note.admin_response = admin_response
    note.admin_id = admin.id
    note.status = MessageStatus.REPLIED
    db.session.commit()
    logger.info("Admin %s replied to library message %s", admin.id, note.id)

    send_notification(
        note.user.email,
        f"Library Response: {note.subject}",
        f"Hi {note.user.fullname},\n"
        "A librarian has responded to your message.\n"
        f"Your question: {note.subject}\n{note.message}\n"
        f"Librarian's response: {admin_response}\n"
        f"Responded by: {admin.fullname}",
    )
    return ActionResult.ok("Reply sent", library_message=note.to_dict())


@action("Failed to update message status.")
def mark_message_as_read(message_id):
    note = db.session.get(LibraryMessage, message_id)
    if note is None:
        return ActionResult.not_found("Message")
    if note.status != MessageStatus.UNREAD:
        return ActionResult.conflict("Message is not unread", note.status)
    note.status = MessageStatus.READ
    db.session.commit()
    return ActionResult.ok("Message marked as read", library_message=note.to_dict())
