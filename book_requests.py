"""Reader requests for titles the library does not own yet."""

import logging

from flask import current_app

from models import BookRequest, RequestStatus, User, db, utcnow
from notifications import send_notification
from results import ActionResult, action

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    RequestStatus.APPROVED: (
        "We're pleased to inform you that your book request has been approved! "
        "We will notify you once the book is available in our library."
    ),
    RequestStatus.REJECTED: "We regret to inform you that your book request has been declined at this time.",
    RequestStatus.PENDING: "Your book request is currently under review.",
}


@action("Failed to submit book request. Please try again.")
def create_book_request(user_id, title, author=None, genre=None, description=None):
    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")

    request = BookRequest(
        user_id=user_id,
        title=title,
        author=author or None,
        genre=genre or None,
        description=description or None,
    )
    db.session.add(request)
    db.session.commit()
    logger.info("User %s requested %r", user_id, title)

    send_notification(
        user.email,
        f"Book Request: {title} - Received",
        f"Hello {user.fullname},\n"
        f'Thank you for requesting "{title}".\n'
        "Our library team will review your request and let you know when this title "
        "becomes available.",
    )
    return ActionResult.ok("Book request submitted", request=request.to_dict())


@action("Failed to fetch your book requests.")
def get_user_book_requests(user_id):
    requests_ = (
        BookRequest.query.filter_by(user_id=user_id)
        .order_by(BookRequest.created_at.desc(), BookRequest.id.desc())
        .all()
    )
    return ActionResult.ok(requests=[r.to_dict() for r in requests_])


@action("Failed to fetch book requests.")
def list_book_requests(query=None, page=1):
    q = BookRequest.query
    if query:
        pattern = f"%{query}%"
        q = q.filter(
            BookRequest.title.ilike(pattern)
            | BookRequest.author.ilike(pattern)
            | BookRequest.genre.ilike(pattern)
        )
    pagination = q.order_by(BookRequest.created_at.desc(), BookRequest.id.desc()).paginate(
        page=page, per_page=current_app.config["ITEMS_PER_PAGE"], error_out=False
    )
    return ActionResult.ok(
        requests=[dict(r.to_dict(), user={"fullname": r.user.fullname}) for r in pagination.items],
        metadata={
            "current_page": page,
            "total_pages": pagination.pages,
            "total_count": pagination.total,
            "has_next_page": pagination.has_next,
        },
    )


@action("Failed to update book request status.")
def update_book_request_status(request_id, status, admin_note=None):
    status = (status or "").upper()
    if status not in RequestStatus.ALL:
        return ActionResult.fail("Status must be PENDING, APPROVED or REJECTED")

    request = db.session.get(BookRequest, request_id)
    if request is None:
        return ActionResult.not_found("Book request")

    request.status = status
    request.admin_note = admin_note or None
    request.updated_at = utcnow()
    db.session.commit()

    send_notification(
        request.user.email,
        f"Book Request Status Update: {request.title}",
        f"Hello {request.user.fullname},\n"
        f"{STATUS_MESSAGES[status]}\n"
        f"Book title: {request.title}\n"
        + (f"Note from the librarian: {admin_note}" if admin_note else ""),
    )
    return ActionResult.ok("Book request updated", request=request.to_dict())
