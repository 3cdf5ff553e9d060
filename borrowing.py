"""Borrowing and returning copies.

A borrow record moves BORROWED -> OVERDUE -> RETURNED/LOST; RETURNED and
LOST are terminal. ``Book.available_copies`` only changes through
conditional UPDATEs so two requests can never take the same last copy.
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from eligibility import evaluate_eligibility, sync_user_status
from holds import notify_hold_ready, promote, reserved_copies
from models import (
    Book,
    BookHold,
    BorrowRecord,
    BorrowStatus,
    HoldStatus,
    User,
    UserStatus,
    db,
    utcnow,
)
from notifications import send_notification
from results import ActionResult, action

logger = logging.getLogger(__name__)

TRANSITIONS = {
    BorrowStatus.BORROWED: (BorrowStatus.OVERDUE, BorrowStatus.RETURNED, BorrowStatus.LOST),
    BorrowStatus.OVERDUE: (BorrowStatus.RETURNED, BorrowStatus.LOST),
    BorrowStatus.RETURNED: (),
    BorrowStatus.LOST: (),
}


def active_borrow(user_id, book_id):
    return BorrowRecord.query.filter(
        BorrowRecord.user_id == user_id,
        BorrowRecord.book_id == book_id,
        BorrowRecord.status.in_(BorrowStatus.ACTIVE),
    ).first()


def render_receipt(record, user, book):
    days = (record.due_date - record.borrow_date.date()).days
    return (
        f"Receipt ID: #{record.id}\n"
        f"Borrower: {user.fullname}\n"
        f"Title: {book.title}\n"
        f"Author: {book.author}\n"
        f"Category: {book.genre or '-'}\n"
        f"Borrowed on: {record.borrow_date:%B %d, %Y}\n"
        f"Due date: {record.due_date:%B %d, %Y}\n"
        f"Duration: {days} days\n"
        "Please return the book by the due date. Late returns are fined "
        f"{current_app.config['OVERDUE_FINE_PER_DAY']} per day and lost books "
        "are charged at twice the replacement cost."
    )


@action("Error borrowing book")
def borrow(book_id, user_id, today=None):
    today = today or utcnow().date()

    if active_borrow(user_id, book_id):
        return ActionResult.fail("You have already borrowed this book", already_borrowed=True)

    book = db.session.get(Book, book_id)
    if book is None:
        return ActionResult.not_found("Book")
    if book.available_copies <= 0:
        return ActionResult.fail("Book is not available")

    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")

    eligibility = evaluate_eligibility(user_id)
    if not eligibility.is_eligible:
        return ActionResult.fail(eligibility.reason, eligibility=eligibility.to_dict())

    if user.status != UserStatus.APPROVED:
        return ActionResult.fail(
            f"Your account is {user.status.lower()} and cannot borrow books"
        )

    # copies promised to other readers' READY holds are off the shelf
    reserved = reserved_copies(book_id, exclude_user_id=user_id)
    taken = Book.query.filter(
        Book.id == book_id, Book.available_copies > reserved
    ).update({Book.available_copies: Book.available_copies - 1})
    if not taken:
        db.session.rollback()
        if reserved:
            return ActionResult.fail("All available copies are reserved for readers with holds")
        return ActionResult.fail("Book is not available")

    # picking up a READY hold consumes it
    BookHold.query.filter_by(
        user_id=user_id, book_id=book_id, status=HoldStatus.READY
    ).update({BookHold.status: HoldStatus.FULFILLED})
    record = BorrowRecord(
        user_id=user_id,
        book_id=book_id,
        borrow_date=utcnow(),
        due_date=today + timedelta(days=current_app.config["LOAN_PERIOD_DAYS"]),
        status=BorrowStatus.BORROWED,
    )
    db.session.add(record)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return ActionResult.fail("You have already borrowed this book", already_borrowed=True)

    logger.info("User %s borrowed book %s (record %s)", user_id, book_id, record.id)

    send_notification(user.email, "Your Library Book Receipt", render_receipt(record, user, book))
    send_notification(
        user.email,
        f'You borrowed "{book.title}"!',
        f"Hi {user.fullname},\n"
        f'You\'ve successfully borrowed "{book.title}" by {book.author}.\n'
        f"Please remember to return the book by {record.due_date:%A, %B %d, %Y}.",
    )
    return ActionResult.ok("Book borrowed successfully", borrow=record.to_dict())


def refusal(record, status):
    """Conflict result when ``record`` cannot move to ``status``, else None."""
    if record.status == status:
        return ActionResult.conflict(f"Borrow record is already {status.lower()}", record.status)
    if status not in TRANSITIONS[record.status]:
        return ActionResult.conflict(
            f"Cannot change a {record.status.lower()} borrow record to {status.lower()}",
            record.status,
        )
    return None


@action("Something went wrong while updating the status")
def change_borrow_status(borrow_id, status, today=None):
    status = (status or "").upper()
    if status not in BorrowStatus.ALL:
        return ActionResult.fail(
            "Invalid status value. Must be one of " + ", ".join(BorrowStatus.ALL)
        )

    record = db.session.get(BorrowRecord, borrow_id)
    if record is None:
        return ActionResult.not_found("Borrow record")
    refused = refusal(record, status)
    if refused:
        return refused

    values = {BorrowRecord.status: status}
    if status == BorrowStatus.RETURNED:
        values[BorrowRecord.return_date] = today or utcnow().date()
    # only flips the row if it still has the status read above
    flipped = BorrowRecord.query.filter(
        BorrowRecord.id == record.id, BorrowRecord.status == record.status
    ).update(values)
    if not flipped:
        db.session.rollback()
        logger.warning("Borrow record %s changed before it could be set to %s", borrow_id, status)
        return refusal(record, status) or ActionResult.conflict(
            "Borrow record was changed by another request", record.status
        )

    promoted = None
    if status == BorrowStatus.RETURNED:
        Book.query.filter(
            Book.id == record.book_id, Book.available_copies < Book.total_copies
        ).update({Book.available_copies: Book.available_copies + 1})
        db.session.flush()
        promoted = promote(record.book)

    sync_user_status(record.user)
    db.session.commit()
    logger.info("Borrow record %s is now %s", record.id, status)

    if status == BorrowStatus.RETURNED:
        send_notification(
            record.user.email,
            f"Book Returned: {record.book.title}",
            f"Hi {record.user.fullname},\n"
            f'We have received "{record.book.title}". Thank you for returning it.',
        )
    if promoted is not None:
        notify_hold_ready(promoted)

    return ActionResult.ok(f"Status updated to {status}", borrow=record.to_dict())


@action("Error getting borrowed books")
def get_borrowed_books(user_id):
    records = (
        BorrowRecord.query.filter_by(user_id=user_id)
        .order_by(BorrowRecord.borrow_date.desc())
        .all()
    )
    return ActionResult.ok(
        borrows=[dict(r.to_dict(), book=r.book.to_dict()) for r in records]
    )


@action("Something went wrong while fetching borrow records.")
def list_borrow_records(status=None, query=None, page=1):
    q = BorrowRecord.query.join(Book).join(User)
    if status:
        q = q.filter(BorrowRecord.status == status.upper())
    if query:
        pattern = f"%{query}%"
        q = q.filter(
            Book.title.ilike(pattern) | Book.genre.ilike(pattern) | User.fullname.ilike(pattern)
        )
    pagination = q.order_by(BorrowRecord.borrow_date.desc()).paginate(
        page=page, per_page=current_app.config["ITEMS_PER_PAGE"], error_out=False
    )
    return ActionResult.ok(
        borrows=[
            dict(r.to_dict(), book=r.book.to_dict(), user=r.user.to_dict())
            for r in pagination.items
        ],
        metadata={
            "current_page": page,
            "total_pages": pagination.pages,
            "total_count": pagination.total,
            "has_next_page": pagination.has_next,
        },
    )
