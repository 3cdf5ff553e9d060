import logging
from datetime import date

from flask import current_app

from models import (
    BorrowRecord,
    BorrowStatus,
    ExtensionRequest,
    RequestStatus,
    Role,
    User,
    db,
    utcnow,
)
from notifications import send_notification
from results import NOT_FOUND, ActionResult, action

logger = logging.getLogger(__name__)


def approved_this_month(user_id, now=None):
    now = now or utcnow()
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return ExtensionRequest.query.filter(
        ExtensionRequest.user_id == user_id,
        ExtensionRequest.status == RequestStatus.APPROVED,
        ExtensionRequest.request_date >= start_of_month,
    ).count()


@action("Failed to create extension request")
def create_extension_request(borrow_record_id, user_id, requested_due_date, reason=None, now=None):
    now = now or utcnow()
    if isinstance(requested_due_date, str):
        try:
            requested_due_date = date.fromisoformat(requested_due_date)
        except ValueError:
            return ActionResult.fail("Requested due date is not a valid date")

    record = BorrowRecord.query.filter_by(
        id=borrow_record_id, user_id=user_id, status=BorrowStatus.BORROWED
    ).first()
    if record is None:
        return ActionResult.fail("Borrow record not found or not active", kind=NOT_FOUND)

    if requested_due_date <= record.due_date:
        return ActionResult.fail("Requested due date must be after the current due date")

    pending = ExtensionRequest.query.filter_by(
        borrow_record_id=borrow_record_id, status=RequestStatus.PENDING
    ).first()
    if pending:
        return ActionResult.fail("You already have a pending extension request for this book")

    limit = current_app.config["MAX_APPROVED_EXTENSIONS_PER_MONTH"]
    if approved_this_month(user_id, now) >= limit:
        return ActionResult.fail(f"You have already used your {limit} extension requests for this month")

    request = ExtensionRequest(
        borrow_record_id=record.id,
        user_id=user_id,
        request_date=now,
        current_due_date=record.due_date,
        requested_due_date=requested_due_date,
        reason=reason or None,
    )
    db.session.add(request)
    db.session.commit()
    logger.info("Extension request %s for borrow record %s", request.id, record.id)

    # only the first admin is told
    admin = User.query.filter_by(role=Role.ADMIN).order_by(User.id).first()
    if admin is not None:
        send_notification(
            admin.email,
            "New Due Date Extension Request",
            f"Hello {admin.fullname},\n"
            "A new due date extension request has been submitted.\n"
            f"Book: {record.book.title}\n"
            f"Current due date: {record.due_date:%B %d, %Y}\n"
            f"Requested due date: {requested_due_date:%B %d, %Y}\n"
            + (f"Reason: {reason}\n" if reason else "")
            + "Please review this request in the admin dashboard.",
        )
    return ActionResult.ok("Extension request submitted", extension=request.to_dict())


@action("Failed to update extension request status")
def decide_extension_request(request_id, status, admin_note=None):
    status = (status or "").upper()
    if status not in (RequestStatus.APPROVED, RequestStatus.REJECTED):
        return ActionResult.fail("Status must be APPROVED or REJECTED")

    request = db.session.get(ExtensionRequest, request_id)
    if request is None:
        return ActionResult.not_found("Extension request")
    if request.status != RequestStatus.PENDING:
        return ActionResult.conflict(
            f"Extension request has already been {request.status.lower()}", request.status
        )

    record = request.borrow_record
    if status == RequestStatus.APPROVED:
        if record.status != BorrowStatus.BORROWED:
            return ActionResult.conflict(
                f"Cannot approve an extension for a {record.status.lower()} borrow record",
                record.status,
            )
        record.due_date = request.requested_due_date

    request.status = status
    request.admin_note = admin_note or None
    db.session.commit()
    logger.info("Extension request %s %s", request.id, status.lower())

    if status == RequestStatus.APPROVED:
        outcome = f"Your new due date is {request.requested_due_date:%B %d, %Y}."
    else:
        outcome = f"The current due date {request.current_due_date:%B %d, %Y} remains in effect."
    send_notification(
        request.user.email,
        f"Due Date Extension Request {status}",
        f"Hello {request.user.fullname},\n"
        f'Your request to extend the due date for "{record.book.title}" has been {status.lower()}.\n'
        f"{outcome}\n" + (f"Admin note: {admin_note}" if admin_note else ""),
    )
    return ActionResult.ok(f"Extension request {status.lower()}", extension=request.to_dict())


def _extension_row(request):
    book = request.borrow_record.book
    return dict(request.to_dict(), book={"id": book.id, "title": book.title, "author": book.author})


@action("Failed to fetch extension requests")
def get_user_extension_requests(user_id):
    requests_ = (
        ExtensionRequest.query.filter_by(user_id=user_id)
        .order_by(ExtensionRequest.created_at, ExtensionRequest.id)
        .all()
    )
    return ActionResult.ok(extensions=[_extension_row(r) for r in requests_])


@action("Failed to fetch extension requests")
def list_extension_requests(status=None, page=1):
    q = ExtensionRequest.query
    if status:
        q = q.filter(ExtensionRequest.status == status.upper())
    pagination = q.order_by(ExtensionRequest.created_at, ExtensionRequest.id).paginate(
        page=page, per_page=current_app.config["ITEMS_PER_PAGE"], error_out=False
    )
    return ActionResult.ok(
        extensions=[
            dict(_extension_row(r), user={"id": r.user.id, "fullname": r.user.fullname})
            for r in pagination.items
        ],
        metadata={
            "current_page": page,
            "total_pages": pagination.pages,
            "total_count": pagination.total,
            "has_next_page": pagination.has_next,
        },
    )
