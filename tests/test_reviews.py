import pytest

from models import BorrowStatus
from results import NOT_FOUND, VALIDATION
from reviews import create_review, get_book_reviews


@pytest.fixture
def returned(make_user, make_book, make_borrow):
    """A reader who has borrowed and returned a book."""
    user = make_user(fullname="Mary Shelley")
    book = make_book(title="Frankenstein")
    make_borrow(user, book, status=BorrowStatus.RETURNED)
    return user, book


def test_review_after_return(returned):
    user, book = returned

    result = create_review(user.id, book.id, 5, "Unsettling")
    assert result.success
    assert result.data["review"]["rating"] == 5
    assert result.data["review"]["comment"] == "Unsettling"


@pytest.mark.parametrize("status", [BorrowStatus.BORROWED, BorrowStatus.OVERDUE, BorrowStatus.LOST])
def test_must_return_before_reviewing(make_user, make_book, make_borrow, status):
    user, book = make_user(), make_book()
    make_borrow(user, book, status=status)

    result = create_review(user.id, book.id, 4)
    assert result.kind == VALIDATION
    assert result.error == "You must borrow and return the book before reviewing it."


def test_one_review_per_book(returned):
    user, book = returned
    create_review(user.id, book.id, 4)

    result = create_review(user.id, book.id, 1)
    assert result.error == "You have already reviewed this book."


@pytest.mark.parametrize("rating", [0, 6])
def test_rating_range(returned, rating):
    user, book = returned
    assert create_review(user.id, book.id, rating).error == "Rating must be between 1 and 5"


def test_unknown_book_or_reader(returned):
    user, book = returned
    assert create_review(user.id, 404, 3).kind == NOT_FOUND
    assert create_review(404, book.id, 3).kind == NOT_FOUND
    assert get_book_reviews(404).kind == NOT_FOUND


def test_book_reviews_with_average(returned, make_user, make_borrow):
    user, book = returned
    other = make_user(fullname="Percy Shelley")
    make_borrow(other, book, status=BorrowStatus.RETURNED)
    create_review(user.id, book.id, 5)
    create_review(other.id, book.id, 2, "Too long")

    result = get_book_reviews(book.id)
    assert result.data["review_count"] == 2
    assert result.data["average_rating"] == 3.5
    assert [r["user"]["fullname"] for r in result.data["reviews"]] == ["Percy Shelley", "Mary Shelley"]


def test_no_reviews_yet(make_book):
    result = get_book_reviews(make_book().id)
    assert result.data == {"reviews": [], "review_count": 0, "average_rating": None}
