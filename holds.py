"""Hold queue: a FIFO waitlist per book.

A READY hold reserves one of the book's available copies for the holder
until ``expiry_date``. Promotion only happens while there is an available
copy that no READY hold has claimed, so cascades after expiries can never
promote more waiters than there are copies on the shelf.
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import Book, BookHold, BorrowRecord, BorrowStatus, HoldStatus, User, db, utcnow
from notifications import send_notification
from results import ActionResult, action

logger = logging.getLogger(__name__)


def reserved_copies(book_id, exclude_user_id=None):
    """Number of copies of ``book_id`` held for READY holds."""
    q = BookHold.query.filter(
        BookHold.book_id == book_id, BookHold.status == HoldStatus.READY
    )
    if exclude_user_id is not None:
        q = q.filter(BookHold.user_id != exclude_user_id)
    return q.count()


def active_hold(user_id, book_id):
    return BookHold.query.filter(
        BookHold.user_id == user_id,
        BookHold.book_id == book_id,
        BookHold.status.in_(HoldStatus.ACTIVE),
    ).first()


def next_waiting_hold(book_id):
    return (
        BookHold.query.filter_by(book_id=book_id, status=HoldStatus.WAITING)
        .order_by(BookHold.request_date, BookHold.id)
        .first()
    )


def promote(book, now=None):
    """Move the oldest WAITING hold on ``book`` to READY, without committing.

    Returns the promoted hold, or None when nobody is waiting or no
    unreserved copy is available.
    """
    now = now or utcnow()
    if book.available_copies <= reserved_copies(book.id):
        return None
    hold = next_waiting_hold(book.id)
    if hold is None:
        return None
    hold.status = HoldStatus.READY
    hold.notification_date = now
    hold.expiry_date = now + timedelta(days=current_app.config["HOLD_PICKUP_DAYS"])
    db.session.flush()
    logger.info("Hold %s on book %s is ready until %s", hold.id, book.id, hold.expiry_date)
    return hold


def notify_hold_ready(hold):
    deadline = hold.expiry_date.strftime("%A, %B %d, %Y")
    return send_notification(
        hold.user.email,
        f"Book Available for Pickup: {hold.book.title}",
        f"Hi {hold.user.fullname},\n"
        f'Good news! "{hold.book.title}" by {hold.book.author}, which you placed a hold on, '
        "is now available for pickup.\n"
        f"Please borrow it before {deadline}. If it is not picked up by then, the hold "
        "will expire and the book will be offered to the next person in the queue.",
    )


@action("An error occurred while placing hold")
def place_hold(user_id, book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        return ActionResult.not_found("Book")
    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")

    if book.available_copies > reserved_copies(book_id):
        return ActionResult.fail("This book is currently available. You can borrow it directly.")

    if active_hold(user_id, book_id):
        return ActionResult.fail("You already have a hold on this book")

    existing_borrow = BorrowRecord.query.filter(
        BorrowRecord.user_id == user_id,
        BorrowRecord.book_id == book_id,
        BorrowRecord.status.in_(BorrowStatus.ACTIVE),
    ).first()
    if existing_borrow:
        return ActionResult.fail("You are currently borrowing this book")

    hold = BookHold(user_id=user_id, book_id=book_id, status=HoldStatus.WAITING)
    db.session.add(hold)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return ActionResult.fail("You already have a hold on this book")

    logger.info("User %s placed hold %s on book %s", user_id, hold.id, book_id)
    send_notification(
        user.email,
        f"Hold Placed: {book.title}",
        f"Hi {user.fullname},\n"
        f'You have successfully placed a hold on "{book.title}" by {book.author}.\n'
        "You will be notified when the book becomes available for pickup.",
    )
    return ActionResult.ok("Hold placed", hold=hold.to_dict())


@action("An error occurred while cancelling the hold")
def cancel_hold(hold_id):
    hold = db.session.get(BookHold, hold_id)
    if hold is None:
        return ActionResult.not_found("Hold")
    if hold.status in (HoldStatus.FULFILLED, HoldStatus.CANCELLED):
        return ActionResult.conflict(
            f"This hold has already been {hold.status.lower()}", hold.status
        )

    was_ready = hold.status == HoldStatus.READY
    hold.status = HoldStatus.CANCELLED
    db.session.flush()
    # a cancelled READY hold releases its reserved copy to the next waiter
    promoted = promote(hold.book) if was_ready else None
    db.session.commit()

    send_notification(
        hold.user.email,
        f"Hold Cancelled: {hold.book.title}",
        f"Hi {hold.user.fullname},\n"
        f'Your hold for "{hold.book.title}" has been cancelled as requested.',
    )
    if promoted is not None:
        notify_hold_ready(promoted)
    return ActionResult.ok("Hold cancelled successfully")


@action("An error occurred while processing holds")
def promote_next_hold(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        return ActionResult.not_found("Book")
    hold = promote(book)
    if hold is None:
        return ActionResult.ok("No holds waiting for this book", notified=False)
    db.session.commit()
    notified = notify_hold_ready(hold)
    return ActionResult.ok(
        "Hold processed", notified=notified, hold_id=hold.id, user_id=hold.user_id
    )


@action("An error occurred while checking expired holds")
def sweep_expired_holds(now=None):
    now = now or utcnow()
    expired = (
        BookHold.query.filter(
            BookHold.status == HoldStatus.READY, BookHold.expiry_date < now
        )
        .order_by(BookHold.expiry_date, BookHold.id)
        .all()
    )
    if not expired:
        return ActionResult.ok("No expired holds found", updated_count=0)

    promoted = []
    for hold in expired:
        hold.status = HoldStatus.EXPIRED
        db.session.flush()
        # re-reads the queue each time, so several expiries on one book
        # promote successive waiters
        next_hold = promote(hold.book, now)
        if next_hold is not None:
            promoted.append(next_hold)
    db.session.commit()

    for hold in expired:
        send_notification(
            hold.user.email,
            f"Hold Expired: {hold.book.title}",
            f"Hi {hold.user.fullname},\n"
            f'Your hold for "{hold.book.title}" has expired because the pickup period has passed.\n'
            "If you are still interested in this book, you can place a new hold.",
        )
    for hold in promoted:
        notify_hold_ready(hold)

    logger.info("Expired %d holds, promoted %d", len(expired), len(promoted))
    return ActionResult.ok(
        f"Updated {len(expired)} expired holds",
        updated_count=len(expired),
        promoted_count=len(promoted),
    )


@action("An error occurred while fulfilling the hold")
def fulfill_hold(hold_id):
    hold = db.session.get(BookHold, hold_id)
    if hold is None:
        return ActionResult.not_found("Hold")
    if hold.status != HoldStatus.READY:
        return ActionResult.conflict("This hold is not ready for fulfillment", hold.status)
    hold.status = HoldStatus.FULFILLED
    db.session.commit()
    return ActionResult.ok("Hold fulfilled successfully", hold=hold.to_dict())


@action("An error occurred while retrieving holds")
def get_user_holds(user_id):
    holds = (
        BookHold.query.filter_by(user_id=user_id)
        .order_by(BookHold.request_date.desc())
        .all()
    )
    return ActionResult.ok(
        holds=[dict(h.to_dict(), book=h.book.to_dict()) for h in holds]
    )


@action("An error occurred while retrieving holds")
def get_book_holds(book_id):
    holds = (
        BookHold.query.filter(
            BookHold.book_id == book_id, BookHold.status.in_(HoldStatus.ACTIVE)
        )
        .order_by(BookHold.request_date, BookHold.id)
        .all()
    )
    return ActionResult.ok(
        holds=[
            dict(h.to_dict(), user={"fullname": h.user.fullname, "email": h.user.email})
            for h in holds
        ]
    )
