from flask_sqlalchemy import SQLAlchemy
from datetime import date, datetime, timezone

db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    BLOCKED = "BLOCKED"


class Role:
    USER = "USER"
    ADMIN = "ADMIN"


class BorrowStatus:
    BORROWED = "BORROWED"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"
    LOST = "LOST"

    ALL = (BORROWED, OVERDUE, RETURNED, LOST)
    ACTIVE = (BORROWED, OVERDUE)


class FineType:
    OVERDUE = "OVERDUE"
    DAMAGE = "DAMAGE"
    LOST = "LOST"


class FineStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    WAIVED = "WAIVED"


class HoldStatus:
    WAITING = "WAITING"
    READY = "READY"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    ACTIVE = (WAITING, READY)


class RequestStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    ALL = (PENDING, APPROVED, REJECTED)


class MessageStatus:
    UNREAD = "UNREAD"
    READ = "READ"
    REPLIED = "REPLIED"

    ALL = (UNREAD, READ, REPLIED)


class RoomType:
    INDIVIDUAL_POD = "INDIVIDUAL_POD"
    GROUP_ROOM = "GROUP_ROOM"


class BookingStatus:
    BOOKED = "BOOKED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class SerializerMixin:
    def to_dict(self):
        out = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            out[column.name] = value
        return out


class User(SerializerMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    fullname = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    university_id = db.Column(db.Integer, nullable=False, unique=True)
    status = db.Column(db.String(20), nullable=False, default=UserStatus.PENDING)
    role = db.Column(db.String(10), nullable=False, default=Role.USER)
    last_activity_date = db.Column(db.Date, default=lambda: utcnow().date())
    created_at = db.Column(db.DateTime, default=utcnow)


class Book(SerializerMixin, db.Model):
    __tablename__ = "books"
    __table_args__ = (
        db.CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_available_copies",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    author = db.Column(db.String(255), nullable=False)
    genre = db.Column(db.String(255))
    description = db.Column(db.Text)
    total_copies = db.Column(db.Integer, nullable=False, default=0)
    available_copies = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)


class BorrowRecord(SerializerMixin, db.Model):
    __tablename__ = "borrow_records"
    __table_args__ = (
        # one BORROWED/OVERDUE record per (user, book)
        db.Index(
            "uq_borrow_records_active",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=db.text("status IN ('BORROWED', 'OVERDUE')"),
            postgresql_where=db.text("status IN ('BORROWED', 'OVERDUE')"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)
    borrow_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    due_date = db.Column(db.Date, nullable=False)
    return_date = db.Column(db.Date)
    status = db.Column(db.String(10), nullable=False, default=BorrowStatus.BORROWED)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User", backref="borrow_records")
    book = db.relationship("Book", backref="borrow_records")


class Fine(SerializerMixin, db.Model):
    __tablename__ = "fines"
    __table_args__ = (
        db.UniqueConstraint("borrow_record_id", "fine_type", name="uq_fines_record_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    borrow_record_id = db.Column(db.Integer, db.ForeignKey("borrow_records.id"), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    fine_type = db.Column(db.String(10), nullable=False)
    status = db.Column(db.String(10), nullable=False, default=FineStatus.PENDING)
    description = db.Column(db.Text)
    paid_at = db.Column(db.DateTime)
    waived_at = db.Column(db.DateTime)
    waived_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", foreign_keys=[user_id], backref="fines")
    borrow_record = db.relationship("BorrowRecord", backref="fines")


class BookHold(SerializerMixin, db.Model):
    __tablename__ = "book_holds"
    __table_args__ = (
        # one WAITING/READY hold per (user, book)
        db.Index(
            "uq_book_holds_active",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=db.text("status IN ('WAITING', 'READY')"),
            postgresql_where=db.text("status IN ('WAITING', 'READY')"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)
    request_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    notification_date = db.Column(db.DateTime)
    expiry_date = db.Column(db.DateTime)
    status = db.Column(db.String(10), nullable=False, default=HoldStatus.WAITING)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref="holds")
    book = db.relationship("Book", backref="holds")


class ExtensionRequest(SerializerMixin, db.Model):
    __tablename__ = "extension_requests"

    id = db.Column(db.Integer, primary_key=True)
    borrow_record_id = db.Column(db.Integer, db.ForeignKey("borrow_records.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    request_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    current_due_date = db.Column(db.Date, nullable=False)
    requested_due_date = db.Column(db.Date, nullable=False)
    reason = db.Column(db.Text)
    status = db.Column(db.String(10), nullable=False, default=RequestStatus.PENDING)
    admin_note = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref="extension_requests")
    borrow_record = db.relationship("BorrowRecord", backref="extension_requests")


class BookRequest(SerializerMixin, db.Model):
    __tablename__ = "book_requests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    author = db.Column(db.String(255))
    genre = db.Column(db.String(255))
    description = db.Column(db.Text)
    status = db.Column(db.String(10), nullable=False, default=RequestStatus.PENDING)
    admin_note = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref="book_requests")


class LibraryRoom(SerializerMixin, db.Model):
    __tablename__ = "library_rooms"

    id = db.Column(db.Integer, primary_key=True)
    room_number = db.Column(db.String(50), nullable=False, unique=True)
    capacity = db.Column(db.Integer, nullable=False)
    room_type = db.Column(db.String(20), nullable=False, default=RoomType.INDIVIDUAL_POD)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)


class RoomBooking(SerializerMixin, db.Model):
    __tablename__ = "room_bookings"

    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey("library_rooms.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(12), nullable=False, default=BookingStatus.BOOKED)
    checkin_time = db.Column(db.DateTime)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    room = db.relationship("LibraryRoom", backref="bookings")
    user = db.relationship("User", backref="room_bookings")


class Review(SerializerMixin, db.Model):
    __tablename__ = "reviews"
    __table_args__ = (
        db.UniqueConstraint("user_id", "book_id", name="uq_reviews_user_book"),
        db.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref="reviews")
    book = db.relationship("Book", backref="reviews")


class LibraryMessage(SerializerMixin, db.Model):
    __tablename__ = "library_messages"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(10), nullable=False, default=MessageStatus.UNREAD)
    admin_response = db.Column(db.Text)
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", foreign_keys=[user_id], backref="library_messages")
