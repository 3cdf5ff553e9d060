import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "library.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Outbound email (HTTP mail API). Unset means notifications are only logged.
    MAIL_API_URL = os.environ.get("MAIL_API_URL")
    MAIL_API_TOKEN = os.environ.get("MAIL_API_TOKEN")
    MAIL_SENDER = os.environ.get("MAIL_SENDER", "University Library <library@example.edu>")
    MAIL_TIMEOUT = 10

    # Shared secret for the /api/cron endpoints
    CRON_SECRET = os.environ.get("CRON_SECRET")

    # Lending rules
    LOAN_PERIOD_DAYS = 7
    OVERDUE_FINE_PER_DAY = 5
    LOST_AFTER_DAYS = 42
    LOST_BOOK_FINE = 1000
    HOLD_PICKUP_DAYS = 3
    MAX_APPROVED_EXTENSIONS_PER_MONTH = 2
    ITEMS_PER_PAGE = 20

    # Study rooms
    ROOM_BOOKING_WINDOW_DAYS = 7
    ROOM_MAX_ACTIVE_BOOKINGS = 3
    ROOM_NO_SHOW_LIMIT = 3
    ROOM_NO_SHOW_LOOKBACK_DAYS = 30
    ROOM_CHECKIN_GRACE_MINUTES = 15


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    MAIL_API_URL = None
    CRON_SECRET = None
    LOG_LEVEL = "DEBUG"
