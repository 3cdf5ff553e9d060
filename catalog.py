import logging

from flask import current_app

from holds import notify_hold_ready, promote, reserved_copies
from models import (
    Book,
    BookHold,
    BorrowRecord,
    BorrowStatus,
    ExtensionRequest,
    Fine,
    FineStatus,
    HoldStatus,
    Review,
    db,
)
from notifications import send_notification
from results import ActionResult, action

logger = logging.getLogger(__name__)


@action("Error creating book")
def create_book(title, author, total_copies, genre=None, description=None):
    book = Book(
        title=title,
        author=author,
        genre=genre,
        description=description,
        total_copies=total_copies,
        available_copies=total_copies,
    )
    db.session.add(book)
    db.session.commit()
    logger.info("Added book %s (%s copies)", book.id, total_copies)
    return ActionResult.ok("Book created", book=book.to_dict())


@action("Error editing book")
def edit_book(book_id, title, author, total_copies, genre=None, description=None):
    book = db.session.get(Book, book_id)
    if book is None:
        return ActionResult.not_found("Book")

    borrowed = book.total_copies - book.available_copies
    book.title = title
    book.author = author
    book.genre = genre
    book.description = description
    book.total_copies = total_copies
    book.available_copies = max(0, total_copies - borrowed)
    db.session.flush()

    # READY holds can never claim more copies than are on the shelf; the
    # latest to be readied go back to the queue, keeping their request date
    requeued = []
    surplus = reserved_copies(book.id) - book.available_copies
    if surplus > 0:
        requeued = (
            BookHold.query.filter_by(book_id=book.id, status=HoldStatus.READY)
            .order_by(BookHold.notification_date.desc(), BookHold.id.desc())
            .limit(surplus)
            .all()
        )
        for hold in requeued:
            hold.status = HoldStatus.WAITING
            hold.notification_date = None
            hold.expiry_date = None
        db.session.flush()

    # extra copies go to whoever is waiting
    promoted = []
    hold = promote(book)
    while hold is not None:
        promoted.append(hold)
        hold = promote(book)

    db.session.commit()
    if requeued or promoted:
        logger.info(
            "Book %s now has %s copies: %d holds requeued, %d promoted",
            book.id, total_copies, len(requeued), len(promoted),
        )

    for hold in requeued:
        send_notification(
            hold.user.email,
            f"Hold Back in Queue: {hold.book.title}",
            f"Hi {hold.user.fullname},\n"
            f'The copy of "{hold.book.title}" set aside for you has been withdrawn from the '
            "collection. Your hold is back at the front of the queue and you will be "
            "notified when another copy becomes available.",
        )
    for hold in promoted:
        notify_hold_ready(hold)

    return ActionResult.ok(
        "Book updated",
        book=book.to_dict(),
        requeued_holds=len(requeued),
        promoted_holds=len(promoted),
    )


@action("Error deleting book")
def delete_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        return ActionResult.not_found("Book")

    on_loan = BorrowRecord.query.filter(
        BorrowRecord.book_id == book_id, BorrowRecord.status.in_(BorrowStatus.ACTIVE)
    ).count()
    if on_loan:
        return ActionResult.fail(
            "Cannot delete a book with copies on loan. Please ensure all copies are returned first."
        )

    record_ids = db.select(BorrowRecord.id).where(BorrowRecord.book_id == book_id)
    unpaid = Fine.query.filter(
        Fine.borrow_record_id.in_(record_ids), Fine.status == FineStatus.PENDING
    ).count()
    if unpaid:
        return ActionResult.fail("Cannot delete a book with unpaid fines against it")

    holders = [
        (h.user.email, h.user.fullname)
        for h in BookHold.query.filter(
            BookHold.book_id == book_id, BookHold.status.in_(HoldStatus.ACTIVE)
        )
    ]
    title = book.title
    deleted = book.to_dict()

    ExtensionRequest.query.filter(ExtensionRequest.borrow_record_id.in_(record_ids)).delete()
    Fine.query.filter(Fine.borrow_record_id.in_(record_ids)).delete()
    BorrowRecord.query.filter_by(book_id=book_id).delete()
    BookHold.query.filter_by(book_id=book_id).delete()
    Review.query.filter_by(book_id=book_id).delete()
    Book.query.filter_by(id=book_id).delete()
    db.session.commit()
    logger.info("Deleted book %s (%s)", book_id, title)

    for email, fullname in holders:
        send_notification(
            email,
            f"Hold Cancelled: {title}",
            f"Hi {fullname},\n"
            f'"{title}" has been removed from the library collection, so your hold on it '
            "has been cancelled.",
        )
    return ActionResult.ok("Book deleted successfully", book=deleted)


@action("Error getting book")
def get_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        return ActionResult.not_found("Book")
    return ActionResult.ok(book=book.to_dict())


@action("Error searching books")
def search_books(query=None, page=1):
    q = Book.query
    if query and query.strip():
        pattern = f"%{query.strip()}%"
        q = q.filter(
            Book.title.ilike(pattern) | Book.author.ilike(pattern) | Book.genre.ilike(pattern)
        )
    pagination = q.order_by(Book.title).paginate(
        page=page, per_page=current_app.config["ITEMS_PER_PAGE"], error_out=False
    )
    return ActionResult.ok(
        books=[b.to_dict() for b in pagination.items],
        metadata={
            "current_page": page,
            "total_pages": pagination.pages,
            "has_next_page": pagination.has_next,
        },
    )
