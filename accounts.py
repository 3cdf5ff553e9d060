import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from holds import notify_hold_ready, promote
from models import (
    Book,
    BookHold,
    BookRequest,
    BorrowRecord,
    BorrowStatus,
    ExtensionRequest,
    Fine,
    FineStatus,
    HoldStatus,
    LibraryMessage,
    Review,
    Role,
    RoomBooking,
    User,
    UserStatus,
    db,
)
from notifications import send_notification
from results import ActionResult, action

logger = logging.getLogger(__name__)


@action("An error occurred while creating the account")
def register_user(fullname, email, university_id, role=Role.USER):
    user = User(
        fullname=fullname,
        email=email.lower(),
        university_id=university_id,
        role=role,
        status=UserStatus.PENDING,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return ActionResult.fail("An account with this email or university ID already exists")
    logger.info("Registered user %s", user.id)
    return ActionResult.ok("Account created, awaiting approval", user=user.to_dict())


@action("An error occurred while updating user status")
def update_account_status(user_id, status):
    status = (status or "").upper()
    if status not in (UserStatus.APPROVED, UserStatus.REJECTED):
        return ActionResult.fail("Status must be APPROVED or REJECTED")

    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")
    if user.status == UserStatus.BLOCKED:
        # blocked accounts are restored by settling fines, not by approval
        return ActionResult.conflict("Blocked accounts cannot be re-approved directly", user.status)

    user.status = status
    db.session.commit()

    if status == UserStatus.APPROVED:
        body = "Your library account has been approved. You can now borrow books."
    else:
        body = "Unfortunately your library account request has been rejected."
    send_notification(
        user.email,
        f"Account {status.capitalize()}",
        f"Hi {user.fullname},\n{body}",
    )
    return ActionResult.ok(f"Account {status.lower()}", user=user.to_dict())


@action("An error occurred while updating user role")
def update_user_role(user_id, role):
    role = (role or "").upper()
    if role not in (Role.USER, Role.ADMIN):
        return ActionResult.fail("Role must be USER or ADMIN")

    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")
    user.role = role
    db.session.commit()

    send_notification(
        user.email,
        "Your Library Role Has Changed",
        f"Hi {user.fullname},\nYour role is now {role.capitalize()}.",
    )
    return ActionResult.ok(f"Role updated to {role}", user=user.to_dict())


@action("An error occurred while fetching users")
def list_users(query=None, sort="newest", page=1):
    q = User.query
    if query and query.strip():
        pattern = f"%{query.strip()}%"
        q = q.filter(User.fullname.ilike(pattern) | User.email.ilike(pattern))
    order = User.created_at.asc() if sort == "oldest" else User.created_at.desc()
    pagination = q.order_by(order, User.id).paginate(
        page=page, per_page=current_app.config["ITEMS_PER_PAGE"], error_out=False
    )

    ids = [u.id for u in pagination.items]
    borrowed = dict(
        db.session.query(BorrowRecord.user_id, db.func.count(BorrowRecord.id))
        .filter(BorrowRecord.user_id.in_(ids))
        .group_by(BorrowRecord.user_id)
        .all()
    )
    return ActionResult.ok(
        users=[
            dict(u.to_dict(), total_borrowed_books=borrowed.get(u.id, 0))
            for u in pagination.items
        ],
        metadata={
            "current_page": page,
            "total_pages": pagination.pages,
            "total_count": pagination.total,
            "has_next_page": pagination.has_next,
        },
    )


@action("An error occurred while deleting the user")
def delete_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        return ActionResult.not_found("User")

    on_loan = BorrowRecord.query.filter(
        BorrowRecord.user_id == user_id, BorrowRecord.status.in_(BorrowStatus.ACTIVE)
    ).count()
    if on_loan:
        return ActionResult.fail(
            "Cannot delete user with borrowed books. Please ensure all books are returned first."
        )
    unpaid = Fine.query.filter_by(user_id=user_id, status=FineStatus.PENDING).count()
    if unpaid:
        return ActionResult.fail("Cannot delete user with unpaid fines")

    # copies this reader had set aside go back to the queue
    released = [
        book_id
        for (book_id,) in db.session.query(BookHold.book_id).filter_by(
            user_id=user_id, status=HoldStatus.READY
        )
    ]
    deleted = user.to_dict()

    Fine.query.filter(Fine.waived_by == user_id).update({Fine.waived_by: None})
    LibraryMessage.query.filter(LibraryMessage.admin_id == user_id).update(
        {LibraryMessage.admin_id: None}
    )
    LibraryMessage.query.filter_by(user_id=user_id).delete()
    ExtensionRequest.query.filter_by(user_id=user_id).delete()
    Fine.query.filter_by(user_id=user_id).delete()
    BorrowRecord.query.filter_by(user_id=user_id).delete()
    BookHold.query.filter_by(user_id=user_id).delete()
    BookRequest.query.filter_by(user_id=user_id).delete()
    Review.query.filter_by(user_id=user_id).delete()
    RoomBooking.query.filter_by(user_id=user_id).delete()
    User.query.filter_by(id=user_id).delete()
    db.session.flush()

    promoted = []
    for book_id in released:
        hold = promote(db.session.get(Book, book_id))
        if hold is not None:
            promoted.append(hold)
    db.session.commit()
    logger.info("Deleted user %s, released %d ready holds", user_id, len(released))

    for hold in promoted:
        notify_hold_ready(hold)
    return ActionResult.ok("User deleted successfully", user=deleted)
