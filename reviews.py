"""Reader reviews. Only readers who have returned a book may rate it, once."""

import logging

from sqlalchemy.exc import IntegrityError

from models import Book, BorrowRecord, BorrowStatus, Review, User, db
from results import ActionResult, action

logger = logging.getLogger(__name__)


def can_review(user_id, book_id):
    return BorrowRecord.query.filter_by(
        user_id=user_id, book_id=book_id, status=BorrowStatus.RETURNED
    ).count() > 0


def has_reviewed(user_id, book_id):
    return Review.query.filter_by(user_id=user_id, book_id=book_id).count() > 0


@action("Failed to submit review. Please try again.")
def create_review(user_id, book_id, rating, comment=None):
    if not 1 <= rating <= 5:
        return ActionResult.fail("Rating must be between 1 and 5")
    book = db.session.get(Book, book_id)
    if book is None:
        return ActionResult.not_found("Book")
    if db.session.get(User, user_id) is None:
        return ActionResult.not_found("User")

    if not can_review(user_id, book_id):
        return ActionResult.fail("You must borrow and return the book before reviewing it.")
    if has_reviewed(user_id, book_id):
        return ActionResult.fail("You have already reviewed this book.")

    review = Review(user_id=user_id, book_id=book_id, rating=rating, comment=comment or None)
    db.session.add(review)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return ActionResult.fail("You have already reviewed this book.")

    logger.info("User %s rated book %s: %s", user_id, book_id, rating)
    return ActionResult.ok("Review submitted", review=review.to_dict())


@action("Failed to fetch reviews for this book.")
def get_book_reviews(book_id):
    if db.session.get(Book, book_id) is None:
        return ActionResult.not_found("Book")
    reviews = (
        Review.query.filter_by(book_id=book_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )
    average = sum(r.rating for r in reviews) / len(reviews) if reviews else None
    return ActionResult.ok(
        reviews=[dict(r.to_dict(), user={"fullname": r.user.fullname}) for r in reviews],
        review_count=len(reviews),
        average_rating=round(average, 1) if average is not None else None,
    )
