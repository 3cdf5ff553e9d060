"""Study room reservations.

Bookings are half-open intervals [start_time, end_time): a booking ending at
10:00 does not clash with one starting at 10:00.
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import and_

from models import BookingStatus, LibraryRoom, RoomBooking, RoomType, User, db, utcnow
from results import ActionResult, action

logger = logging.getLogger(__name__)

LIVE = (BookingStatus.BOOKED, BookingStatus.CHECKED_IN)


def _overlapping(start, end):
    return and_(
        RoomBooking.status != BookingStatus.CANCELLED,
        RoomBooking.start_time < end,
        RoomBooking.end_time > start,
    )


def _check_window(start, end, now):
    """Return an error message if [start, end) cannot be booked, else None."""
    if end <= start:
        return "End time must be after start time"
    if start < now:
        return "Cannot book a room in the past"
    days = current_app.config["ROOM_BOOKING_WINDOW_DAYS"]
    if start > now + timedelta(days=days):
        return f"Reservations can only be made up to {days} days in advance"
    return None


@action("Error adding room")
def add_room(room_number, capacity, room_type=RoomType.INDIVIDUAL_POD, description=None):
    if room_type not in (RoomType.INDIVIDUAL_POD, RoomType.GROUP_ROOM):
        return ActionResult.fail("Room type must be INDIVIDUAL_POD or GROUP_ROOM")
    room = LibraryRoom(
        room_number=room_number, capacity=capacity, room_type=room_type, description=description
    )
    db.session.add(room)
    db.session.commit()
    return ActionResult.ok("Room added", room=room.to_dict())


@action("Error fetching available rooms")
def get_available_rooms(start, end, room_type=None, now=None):
    error = _check_window(start, end, now or utcnow())
    if error:
        return ActionResult.fail(error)

    busy = db.select(RoomBooking.room_id).where(_overlapping(start, end))
    q = LibraryRoom.query.filter(LibraryRoom.id.not_in(busy))
    if room_type:
        q = q.filter(LibraryRoom.room_type == room_type)
    rooms = q.order_by(LibraryRoom.room_number).all()
    return ActionResult.ok(rooms=[r.to_dict() for r in rooms])


@action("Error booking room")
def book_room(room_id, user_id, start, end, notes=None, now=None):
    now = now or utcnow()
    config = current_app.config

    error = _check_window(start, end, now)
    if error:
        return ActionResult.fail(error)
    room = db.session.get(LibraryRoom, room_id)
    if room is None:
        return ActionResult.not_found("Room")
    if db.session.get(User, user_id) is None:
        return ActionResult.not_found("User")

    if RoomBooking.query.filter(RoomBooking.room_id == room_id, _overlapping(start, end)).first():
        return ActionResult.fail("This room is already booked for the selected time")
    if RoomBooking.query.filter(RoomBooking.user_id == user_id, _overlapping(start, end)).first():
        return ActionResult.fail("You already have a booking that overlaps with this time.")

    active = RoomBooking.query.filter(
        RoomBooking.user_id == user_id,
        RoomBooking.start_time >= now,
        RoomBooking.status.in_(LIVE),
    ).count()
    if active >= config["ROOM_MAX_ACTIVE_BOOKINGS"]:
        return ActionResult.fail(
            f"You can only have {config['ROOM_MAX_ACTIVE_BOOKINGS']} active room bookings at a time"
        )

    no_shows = RoomBooking.query.filter(
        RoomBooking.user_id == user_id,
        RoomBooking.status == BookingStatus.NO_SHOW,
        RoomBooking.start_time >= now - timedelta(days=config["ROOM_NO_SHOW_LOOKBACK_DAYS"]),
    ).count()
    if no_shows >= config["ROOM_NO_SHOW_LIMIT"]:
        return ActionResult.fail(
            "Your booking privileges are suspended due to multiple no-shows. "
            "Please contact the library administrator."
        )

    booking = RoomBooking(
        room_id=room_id,
        user_id=user_id,
        start_time=start,
        end_time=end,
        notes=notes,
        status=BookingStatus.BOOKED,
    )
    db.session.add(booking)
    db.session.commit()
    logger.info("Room %s booked by user %s from %s to %s", room.room_number, user_id, start, end)
    return ActionResult.ok("Room booked", booking=booking.to_dict())


@action("Error cancelling booking")
def cancel_booking(booking_id, user_id, now=None):
    now = now or utcnow()
    booking = RoomBooking.query.filter_by(id=booking_id, user_id=user_id).first()
    if booking is None:
        return ActionResult.not_found("Booking")
    if booking.status != BookingStatus.BOOKED:
        return ActionResult.conflict(
            f"Booking is already {booking.status.lower().replace('_', ' ')}", booking.status
        )
    if booking.start_time < now:
        return ActionResult.fail("Cannot cancel a booking that has already started")

    booking.status = BookingStatus.CANCELLED
    db.session.commit()
    return ActionResult.ok("Booking cancelled")


@action("Error checking in")
def check_in_booking(booking_id, user_id, now=None):
    now = now or utcnow()
    booking = RoomBooking.query.filter_by(id=booking_id, user_id=user_id).first()
    if booking is None:
        return ActionResult.not_found("Booking")
    if booking.status != BookingStatus.BOOKED:
        return ActionResult.conflict(
            f"Booking is already {booking.status.lower().replace('_', ' ')}", booking.status
        )

    grace = current_app.config["ROOM_CHECKIN_GRACE_MINUTES"]
    if now < booking.start_time - timedelta(minutes=grace):
        return ActionResult.fail(
            f"Cannot check in more than {grace} minutes before your booking time"
        )
    if now >= booking.end_time:
        return ActionResult.fail("This booking has already ended")

    booking.status = BookingStatus.CHECKED_IN
    booking.checkin_time = now
    db.session.commit()
    return ActionResult.ok("Checked in", booking=booking.to_dict())


@action("Failed to process bookings")
def sweep_room_bookings(now=None):
    now = now or utcnow()
    grace = timedelta(minutes=current_app.config["ROOM_CHECKIN_GRACE_MINUTES"])

    no_shows = RoomBooking.query.filter(
        RoomBooking.status == BookingStatus.BOOKED,
        RoomBooking.checkin_time.is_(None),
        RoomBooking.start_time <= now - grace,
    ).all()
    for booking in no_shows:
        booking.status = BookingStatus.NO_SHOW

    completed = RoomBooking.query.filter(
        RoomBooking.status == BookingStatus.CHECKED_IN,
        RoomBooking.end_time <= now,
    ).all()
    for booking in completed:
        booking.status = BookingStatus.COMPLETED

    db.session.commit()
    logger.info("Room sweep: %d no-shows, %d completed", len(no_shows), len(completed))
    return ActionResult.ok(
        "Bookings processed", no_shows=len(no_shows), completed=len(completed)
    )
