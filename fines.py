"""Fine engine.

The two sweeps are meant to be run by an external scheduler (see the
``flask sweep-*`` commands and ``/api/cron`` routes). Each sweep selects
only records still in the state it moves them out of, and flips the status
in the same transaction that inserts the fine, so re-running a sweep never
fines the same record twice.
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from eligibility import evaluate_eligibility, sync_user_status, sync_users
from models import (
    BorrowRecord,
    BorrowStatus,
    Fine,
    FineStatus,
    FineType,
    Role,
    User,
    db,
    utcnow,
)
from notifications import send_notification
from results import ActionResult, action

logger = logging.getLogger(__name__)

RESTORED = "Your borrowing privileges have been restored. You can now borrow books from the library again."
STILL_BLOCKED = (
    "However, you still have other outstanding fines or overdue books. "
    "Please settle these to restore your borrowing privileges."
)


@action("An error occurred while processing overdue books")
def sweep_overdue(today=None):
    today = today or utcnow().date()
    rate = current_app.config["OVERDUE_FINE_PER_DAY"]

    records = (
        BorrowRecord.query.filter(
            BorrowRecord.status == BorrowStatus.BORROWED,
            BorrowRecord.due_date < today,
        )
        .order_by(BorrowRecord.id)
        .all()
    )
    if not records:
        return ActionResult.ok("No new overdue books found", updated_count=0)

    fined = []
    for record in records:
        days_overdue = (today - record.due_date).days
        amount = days_overdue * rate
        db.session.add(
            Fine(
                user_id=record.user_id,
                borrow_record_id=record.id,
                amount=amount,
                fine_type=FineType.OVERDUE,
                status=FineStatus.PENDING,
                description=f'Overdue fine for "{record.book.title}" ({days_overdue} days late)',
            )
        )
        record.status = BorrowStatus.OVERDUE
        fined.append((record, days_overdue, amount))
    db.session.commit()

    sync_users(record.user_id for record, _, _ in fined)

    for record, days_overdue, amount in fined:
        send_notification(
            record.user.email,
            f'Overdue Book: "{record.book.title}" and Fine Imposed',
            f"Dear {record.user.fullname},\n"
            f'"{record.book.title}" by {record.book.author} was due on '
            f"{record.due_date:%B %d, %Y} and is now OVERDUE.\n"
            f"A fine of {amount:g} has been imposed for the {days_overdue} days it is overdue.\n"
            "Please return the book as soon as possible. Your borrowing privileges are "
            "suspended until the item is returned and the fine is paid.",
        )

    logger.info("Overdue sweep fined %d records", len(fined))
    return ActionResult.ok(
        f"Processed {len(fined)} overdue books and created fines",
        updated_count=len(fined),
    )


@action("An error occurred while processing potentially lost books")
def sweep_lost_books(today=None):
    today = today or utcnow().date()
    cutoff = today - timedelta(days=current_app.config["LOST_AFTER_DAYS"])
    amount = current_app.config["LOST_BOOK_FINE"]

    records = (
        BorrowRecord.query.filter(
            BorrowRecord.status.in_(BorrowStatus.ACTIVE),
            BorrowRecord.due_date < cutoff,
        )
        .order_by(BorrowRecord.id)
        .all()
    )
    if not records:
        return ActionResult.ok("No lost books found", updated_count=0)

    for record in records:
        record.status = BorrowStatus.LOST
        db.session.add(
            Fine(
                user_id=record.user_id,
                borrow_record_id=record.id,
                amount=amount,
                fine_type=FineType.LOST,
                status=FineStatus.PENDING,
                description=f'Fine for lost book: "{record.book.title}" - 2x replacement cost',
            )
        )
    db.session.commit()

    sync_users(record.user_id for record in records)

    for record in records:
        send_notification(
            record.user.email,
            f'IMPORTANT: Book Marked as Lost - "{record.book.title}"',
            f"Dear {record.user.fullname},\n"
            f'"{record.book.title}" by {record.book.author} has been overdue for more than '
            f"{current_app.config['LOST_AFTER_DAYS'] // 7} weeks and has been marked as LOST.\n"
            f"You have been assessed a fine of {amount:g} (twice the replacement cost).\n"
            "Until this matter is resolved, your borrowing privileges remain suspended. "
            "Please contact the circulation desk to discuss your options.",
        )

    logger.info("Lost sweep marked %d records as lost", len(records))
    return ActionResult.ok(
        f"Marked {len(records)} books as lost and created fines",
        updated_count=len(records),
    )


@action("An error occurred while updating the fine status")
def mark_fine_paid(fine_id):
    fine = db.session.get(Fine, fine_id)
    if fine is None:
        return ActionResult.not_found("Fine")
    if fine.status != FineStatus.PENDING:
        return ActionResult.conflict(f"Fine has already been {fine.status.lower()}", fine.status)

    fine.status = FineStatus.PAID
    fine.paid_at = utcnow()
    db.session.flush()
    sync_user_status(fine.user)
    db.session.commit()

    restored = evaluate_eligibility(fine.user_id).is_eligible
    send_notification(
        fine.user.email,
        "Fine Payment Confirmed",
        f"Dear {fine.user.fullname},\n"
        f"Your payment of {fine.amount:g} for the fine related to "
        f'"{fine.borrow_record.book.title}" has been received and processed.\n'
        + (RESTORED if restored else STILL_BLOCKED),
    )
    return ActionResult.ok("Fine marked as paid", borrowing_restored=restored)


@action("An error occurred while waiving the fine")
def waive_fine(fine_id, admin_id, reason):
    reason = (reason or "").strip()
    if not reason:
        return ActionResult.fail("A reason is required to waive a fine")

    fine = db.session.get(Fine, fine_id)
    if fine is None:
        return ActionResult.not_found("Fine")
    admin = db.session.get(User, admin_id)
    if admin is None:
        return ActionResult.not_found("Admin")
    if admin.role != Role.ADMIN:
        return ActionResult.fail("Only administrators can waive fines")
    if fine.status != FineStatus.PENDING:
        return ActionResult.conflict(f"Fine has already been {fine.status.lower()}", fine.status)

    fine.status = FineStatus.WAIVED
    fine.waived_at = utcnow()
    fine.waived_by = admin_id
    fine.description = f"{fine.description or ''} - WAIVED: {reason}"
    db.session.flush()
    sync_user_status(fine.user)
    db.session.commit()
    logger.info("Fine %s waived by %s", fine.id, admin_id)

    restored = evaluate_eligibility(fine.user_id).is_eligible
    send_notification(
        fine.user.email,
        "Fine Waived",
        f"Dear {fine.user.fullname},\n"
        f'Your fine of {fine.amount:g} for "{fine.borrow_record.book.title}" has been waived.\n'
        f"Reason: {reason}\n" + (RESTORED if restored else STILL_BLOCKED),
    )
    return ActionResult.ok("Fine waived successfully", borrowing_restored=restored)


@action("An error occurred while assessing the damage fine")
def assess_damage_fine(borrow_id, amount, description=None):
    if amount is None or amount <= 0:
        return ActionResult.fail("Fine amount must be greater than zero")
    record = db.session.get(BorrowRecord, borrow_id)
    if record is None:
        return ActionResult.not_found("Borrow record")

    fine = Fine(
        user_id=record.user_id,
        borrow_record_id=record.id,
        amount=amount,
        fine_type=FineType.DAMAGE,
        status=FineStatus.PENDING,
        description=description or f'Damage fine for "{record.book.title}"',
    )
    db.session.add(fine)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        return ActionResult.fail("A damage fine already exists for this borrow record")
    sync_user_status(record.user)
    db.session.commit()

    send_notification(
        record.user.email,
        f'Damage Fine: "{record.book.title}"',
        f"Dear {record.user.fullname},\n"
        f"A fine of {fine.amount:g} has been assessed for damage to "
        f'"{record.book.title}".\n{fine.description}',
    )
    return ActionResult.ok("Damage fine created", fine=fine.to_dict())


def _fine_row(fine):
    record = fine.borrow_record
    return dict(
        fine.to_dict(),
        book={"title": record.book.title, "author": record.book.author},
        borrow={
            "borrow_date": record.borrow_date.isoformat(),
            "due_date": record.due_date.isoformat(),
            "return_date": record.return_date.isoformat() if record.return_date else None,
            "status": record.status,
        },
    )


def _unpaid_total(user_id):
    return (
        db.session.query(func.coalesce(func.sum(Fine.amount), 0))
        .filter(Fine.user_id == user_id, Fine.status == FineStatus.PENDING)
        .scalar()
    )


@action("An error occurred while retrieving your fines")
def get_user_fines(user_id):
    fines = Fine.query.filter_by(user_id=user_id).order_by(Fine.created_at.desc(), Fine.id.desc()).all()
    return ActionResult.ok(
        fines=[_fine_row(f) for f in fines],
        total_unpaid=float(_unpaid_total(user_id)),
    )


def _sum_where(status):
    return func.coalesce(func.sum(case((Fine.status == status, Fine.amount), else_=0)), 0)


@action("An error occurred while retrieving fines")
def list_fines(user_id=None, status=None, page=1):
    q = Fine.query
    if user_id:
        q = q.filter(Fine.user_id == user_id)
    if status:
        q = q.filter(Fine.status == status.upper())

    pagination = q.order_by(Fine.created_at.desc(), Fine.id.desc()).paginate(
        page=page, per_page=current_app.config["ITEMS_PER_PAGE"], error_out=False
    )
    pending, paid, waived, grand = q.with_entities(
        _sum_where(FineStatus.PENDING),
        _sum_where(FineStatus.PAID),
        _sum_where(FineStatus.WAIVED),
        func.coalesce(func.sum(Fine.amount), 0),
    ).one()

    return ActionResult.ok(
        fines=[dict(_fine_row(f), user=f.user.to_dict()) for f in pagination.items],
        metadata={
            "current_page": page,
            "total_pages": pagination.pages,
            "total_count": pagination.total,
            "has_next_page": pagination.has_next,
        },
        summary={
            "total_pending": float(pending),
            "total_paid": float(paid),
            "total_waived": float(waived),
            "grand_total": float(grand),
        },
    )
