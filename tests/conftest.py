import itertools
from datetime import timedelta

import pytest
import sqlalchemy as sa

from app import create_app
from config import TestConfig
from models import (
    Book,
    BorrowRecord,
    BorrowStatus,
    Fine,
    FineStatus,
    FineType,
    Role,
    User,
    UserStatus,
    db,
    utcnow,
)
from notifications import Notifier


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def send(self, to_email, subject, body):
        self.sent.append((to_email, subject, body))

    def subjects(self, to_email=None):
        return [s for (to, s, _) in self.sent if to_email is None or to == to_email]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(notifier, tmp_path):
    # a file database, so a second connection sees the same data
    class Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'library.db'}"

    app = create_app(Config, notifier=notifier)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def other_connection(app):
    """Engine for writes made outside the app's session, as a concurrent request would."""
    engine = sa.create_engine(app.config["SQLALCHEMY_DATABASE_URI"])
    yield engine
    engine.dispose()


@pytest.fixture
def today():
    return utcnow().date()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(status=UserStatus.APPROVED, role=Role.USER, fullname=None):
        n = next(counter)
        user = User(
            fullname=fullname or f"Reader {n}",
            email=f"reader{n}@example.edu",
            university_id=20000 + n,
            status=status,
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role=Role.ADMIN, fullname="Head Librarian")


@pytest.fixture
def make_book(app):
    counter = itertools.count(1)

    def _make(total=1, available=None, title=None):
        n = next(counter)
        book = Book(
            title=title or f"Book {n}",
            author=f"Author {n}",
            genre="Fiction",
            total_copies=total,
            available_copies=total if available is None else available,
        )
        db.session.add(book)
        db.session.commit()
        return book

    return _make


@pytest.fixture
def make_borrow(app, today):
    """Check a copy out directly, bypassing the borrow rules."""

    def _make(user, book, due_in_days=7, status=BorrowStatus.BORROWED):
        record = BorrowRecord(
            user_id=user.id,
            book_id=book.id,
            borrow_date=utcnow() - timedelta(days=7 - due_in_days),
            due_date=today + timedelta(days=due_in_days),
            status=status,
        )
        if status != BorrowStatus.RETURNED:
            book.available_copies -= 1
        db.session.add(record)
        db.session.commit()
        return record

    return _make


@pytest.fixture
def make_fine(app):
    def _make(record, amount=10, fine_type=FineType.DAMAGE, status=FineStatus.PENDING):
        fine = Fine(
            user_id=record.user_id,
            borrow_record_id=record.id,
            amount=amount,
            fine_type=fine_type,
            status=status,
            description=f"{fine_type.capitalize()} fine",
        )
        db.session.add(fine)
        db.session.commit()
        return fine

    return _make
