"""Borrowing eligibility.

``evaluate_eligibility`` only reads. Blocking or unblocking the account is a
separate step (``apply_eligibility_consequence``) that callers run after a
state change or from a sweep, never while rendering a read.
"""

import logging
from dataclasses import asdict, dataclass

from sqlalchemy import func

from models import BorrowRecord, BorrowStatus, Fine, FineStatus, User, UserStatus, db
from results import ActionResult, action

logger = logging.getLogger(__name__)


@dataclass
class Eligibility:
    is_eligible: bool
    reason: str
    overdue_count: int = 0
    unpaid_fine_count: int = 0
    total_unpaid_fine_amount: float = 0.0

    def to_dict(self):
        return asdict(self)


def evaluate_eligibility(user_id):
    overdue_count = (
        BorrowRecord.query.filter(
            BorrowRecord.user_id == user_id,
            BorrowRecord.status.in_((BorrowStatus.OVERDUE, BorrowStatus.LOST)),
        ).count()
    )
    fine_count, fine_total = (
        db.session.query(func.count(Fine.id), func.coalesce(func.sum(Fine.amount), 0))
        .filter(Fine.user_id == user_id, Fine.status == FineStatus.PENDING)
        .one()
    )

    if overdue_count:
        reason = "You have overdue books. Please return them to restore your borrowing privileges."
    elif fine_count:
        reason = (
            f"You have unpaid fines totaling {fine_total:g}. "
            "Please pay them to restore your borrowing privileges."
        )
    else:
        reason = "You are eligible to borrow books"

    return Eligibility(
        is_eligible=not overdue_count and not fine_count,
        reason=reason,
        overdue_count=overdue_count,
        unpaid_fine_count=fine_count,
        total_unpaid_fine_amount=float(fine_total),
    )


@action("An error occurred while checking your borrowing eligibility")
def check_eligibility(user_id):
    if db.session.get(User, user_id) is None:
        return ActionResult.not_found("User")
    eligibility = evaluate_eligibility(user_id)
    return ActionResult.ok(eligibility.reason, **eligibility.to_dict())


def sync_user_status(user):
    """Block or unblock ``user``; returns "blocked", "unblocked" or "none".

    The caller commits.
    """
    eligibility = evaluate_eligibility(user.id)
    if not eligibility.is_eligible and user.status == UserStatus.APPROVED:
        user.status = UserStatus.BLOCKED
        logger.info("Blocked user %s: %s", user.id, eligibility.reason)
        return "blocked"
    if eligibility.is_eligible and user.status == UserStatus.BLOCKED:
        user.status = UserStatus.APPROVED
        logger.info("Restored borrowing privileges for user %s", user.id)
        return "unblocked"
    return "none"


@action("Failed to update user status")
def apply_eligibility_consequence(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")
    outcome = sync_user_status(user)
    db.session.commit()
    return ActionResult.ok(f"Borrowing status: {outcome}", action=outcome)


def sync_users(user_ids):
    """Apply the eligibility consequence for each user id, in one commit."""
    outcomes = {}
    for user_id in set(user_ids):
        user = db.session.get(User, user_id)
        if user is not None:
            outcomes[user_id] = sync_user_status(user)
    db.session.commit()
    return outcomes
