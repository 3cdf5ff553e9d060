import logging
from functools import wraps

import click
from flask import Blueprint, Flask, after_this_request, current_app, jsonify, request

import accounts
import book_requests
import borrowing
import catalog
import eligibility
import extension_requests
import fines
import holds
import library_messages
import reviews
import rooms
from config import Config
from forms import (
    AccountStatusForm,
    BookForm,
    BookRequestForm,
    BorrowForm,
    BorrowStatusForm,
    DamageFineForm,
    DecisionForm,
    ExtensionRequestForm,
    LibraryMessageForm,
    RegisterForm,
    ReplyForm,
    ReviewForm,
    RoleForm,
    RoomBookingForm,
    RoomForm,
    RoomSearchForm,
    UserForm,
    WaiveFineForm,
)
from models import BookHold, HoldStatus, db
from notifications import init_notifier
from results import CONFLICT, ERROR, NOT_FOUND, VALIDATION, ActionResult

logger = logging.getLogger(__name__)

bp = Blueprint("library", __name__, url_prefix="/api")

STATUS_CODES = {VALIDATION: 400, NOT_FOUND: 404, CONFLICT: 409, ERROR: 500}


def respond(result, success_code=200):
    code = success_code if result.success else STATUS_CODES.get(result.kind, 400)
    return jsonify(result.to_dict()), code


def invalid(form):
    return jsonify({
        "success": False,
        "error": "Invalid request",
        "kind": VALIDATION,
        "errors": form.errors,
    }), 400


def page_arg():
    return request.args.get("page", 1, type=int)


def cron_job(view):
    """Require ``Authorization: Bearer <CRON_SECRET>`` when a secret is configured."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if secret and request.headers.get("Authorization") != f"Bearer {secret}":
            logger.warning("Rejected unauthenticated call to %s", request.path)
            return jsonify({"success": False, "error": "Unauthorized"}), 401
        return view(*args, **kwargs)

    return wrapper


# ------------------------------------------------------
# BOOKS
# ------------------------------------------------------

@bp.route("/books")
def books():
    return respond(catalog.search_books(request.args.get("q", ""), page_arg()))


@bp.route("/books/<int:book_id>")
def book_detail(book_id):
    return respond(catalog.get_book(book_id))


@bp.route("/books", methods=["POST"])
def add_book():
    form = BookForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(catalog.create_book(
        form.title.data,
        form.author.data,
        form.total_copies.data,
        genre=form.genre.data,
        description=form.description.data,
    ), 201)


@bp.route("/books/<int:book_id>", methods=["PUT"])
def edit_book(book_id):
    form = BookForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(catalog.edit_book(
        book_id,
        form.title.data,
        form.author.data,
        form.total_copies.data,
        genre=form.genre.data,
        description=form.description.data,
    ))


@bp.route("/books/<int:book_id>", methods=["DELETE"])
def delete_book(book_id):
    return respond(catalog.delete_book(book_id))


@bp.route("/books/<int:book_id>/holds")
def book_holds(book_id):
    return respond(holds.get_book_holds(book_id))


@bp.route("/books/<int:book_id>/reviews")
def book_reviews(book_id):
    return respond(reviews.get_book_reviews(book_id))


@bp.route("/books/<int:book_id>/reviews", methods=["POST"])
def review_book(book_id):
    form = ReviewForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(reviews.create_review(
        form.user_id.data, book_id, form.rating.data, form.comment.data
    ), 201)


# ------------------------------------------------------
# USERS
# ------------------------------------------------------

@bp.route("/users", methods=["POST"])
def register():
    form = RegisterForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(accounts.register_user(
        form.fullname.data, form.email.data, form.university_id.data
    ), 201)


@bp.route("/admin/users")
def all_users():
    return respond(accounts.list_users(
        request.args.get("q"), request.args.get("sort", "newest"), page_arg()
    ))


@bp.route("/admin/users/<int:user_id>", methods=["DELETE"])
def delete_user(user_id):
    return respond(accounts.delete_user(user_id))


@bp.route("/admin/users/<int:user_id>/status", methods=["PATCH"])
def account_status(user_id):
    form = AccountStatusForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(accounts.update_account_status(user_id, form.status.data))


@bp.route("/admin/users/<int:user_id>/role", methods=["PATCH"])
def user_role(user_id):
    form = RoleForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(accounts.update_user_role(user_id, form.role.data))


@bp.route("/users/<int:user_id>/eligibility")
def user_eligibility(user_id):
    result = eligibility.check_eligibility(user_id)

    # the read stays pure; blocking/unblocking happens once the view is done
    @after_this_request
    def apply_consequence(response):
        if result.success:
            eligibility.apply_eligibility_consequence(user_id)
        return response

    return respond(result)


@bp.route("/users/<int:user_id>/eligibility/apply", methods=["POST"])
def apply_user_eligibility(user_id):
    return respond(eligibility.apply_eligibility_consequence(user_id))


@bp.route("/users/<int:user_id>/borrows")
def user_borrows(user_id):
    return respond(borrowing.get_borrowed_books(user_id))


@bp.route("/users/<int:user_id>/fines")
def user_fines(user_id):
    return respond(fines.get_user_fines(user_id))


@bp.route("/users/<int:user_id>/holds")
def user_holds(user_id):
    return respond(holds.get_user_holds(user_id))


@bp.route("/users/<int:user_id>/extension-requests")
def user_extension_requests(user_id):
    return respond(extension_requests.get_user_extension_requests(user_id))


@bp.route("/users/<int:user_id>/book-requests")
def user_book_requests(user_id):
    return respond(book_requests.get_user_book_requests(user_id))


@bp.route("/users/<int:user_id>/library-messages")
def user_library_messages(user_id):
    return respond(library_messages.get_user_messages(user_id))


# ------------------------------------------------------
# BORROW / RETURN
# ------------------------------------------------------

@bp.route("/borrows", methods=["POST"])
def borrow_book():
    form = BorrowForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(borrowing.borrow(form.book_id.data, form.user_id.data), 201)


@bp.route("/admin/borrows")
def borrow_records():
    return respond(borrowing.list_borrow_records(
        request.args.get("status"), request.args.get("q"), page_arg()
    ))


@bp.route("/admin/borrows/<int:borrow_id>/status", methods=["PATCH"])
def borrow_status(borrow_id):
    form = BorrowStatusForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(borrowing.change_borrow_status(borrow_id, form.status.data))


# ------------------------------------------------------
# FINES
# ------------------------------------------------------

@bp.route("/admin/fines")
def all_fines():
    return respond(fines.list_fines(
        request.args.get("user_id", type=int), request.args.get("status"), page_arg()
    ))


@bp.route("/admin/fines/<int:fine_id>/pay", methods=["POST"])
def pay_fine(fine_id):
    return respond(fines.mark_fine_paid(fine_id))


@bp.route("/admin/fines/<int:fine_id>/waive", methods=["POST"])
def waive_fine(fine_id):
    form = WaiveFineForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(fines.waive_fine(fine_id, form.admin_id.data, form.reason.data))


@bp.route("/admin/borrows/<int:borrow_id>/damage-fine", methods=["POST"])
def damage_fine(borrow_id):
    form = DamageFineForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(fines.assess_damage_fine(
        borrow_id, form.amount.data, form.description.data
    ), 201)


# ------------------------------------------------------
# HOLDS
# ------------------------------------------------------

@bp.route("/holds", methods=["POST"])
def place_hold():
    form = BorrowForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(holds.place_hold(form.user_id.data, form.book_id.data), 201)


@bp.route("/holds/<int:hold_id>/cancel", methods=["POST"])
def cancel_hold(hold_id):
    return respond(holds.cancel_hold(hold_id))


@bp.route("/holds/<int:hold_id>/checkout", methods=["POST"])
def checkout_hold(hold_id):
    """Borrow the copy a READY hold reserved; the borrow fulfils the hold."""
    hold = db.session.get(BookHold, hold_id)
    if hold is None:
        return respond(ActionResult.not_found("Hold"))
    if hold.status != HoldStatus.READY:
        return respond(ActionResult.conflict("This hold is not ready for fulfillment", hold.status))

    borrowed = borrowing.borrow(hold.book_id, hold.user_id)
    if not borrowed.success:
        return respond(borrowed)
    return respond(ActionResult.ok(
        "Hold fulfilled and book borrowed",
        borrow=borrowed.data["borrow"],
        hold=db.session.get(BookHold, hold_id).to_dict(),
    ), 201)


@bp.route("/admin/holds/<int:hold_id>/fulfill", methods=["POST"])
def fulfill_hold(hold_id):
    return respond(holds.fulfill_hold(hold_id))


@bp.route("/admin/books/<int:book_id>/promote-hold", methods=["POST"])
def promote_hold(book_id):
    return respond(holds.promote_next_hold(book_id))


# ------------------------------------------------------
# EXTENSION REQUESTS
# ------------------------------------------------------

@bp.route("/extension-requests", methods=["POST"])
def request_extension():
    form = ExtensionRequestForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(extension_requests.create_extension_request(
        form.borrow_record_id.data,
        form.user_id.data,
        form.requested_due_date.data,
        reason=form.reason.data,
    ), 201)


@bp.route("/admin/extension-requests")
def all_extension_requests():
    return respond(extension_requests.list_extension_requests(
        request.args.get("status"), page_arg()
    ))


@bp.route("/admin/extension-requests/<int:request_id>/decision", methods=["POST"])
def decide_extension(request_id):
    form = DecisionForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(extension_requests.decide_extension_request(
        request_id, form.status.data, form.admin_note.data
    ))


# ------------------------------------------------------
# BOOK REQUESTS
# ------------------------------------------------------

@bp.route("/book-requests", methods=["POST"])
def request_book():
    form = BookRequestForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(book_requests.create_book_request(
        form.user_id.data,
        form.title.data,
        author=form.author.data,
        genre=form.genre.data,
        description=form.description.data,
    ), 201)


@bp.route("/admin/book-requests")
def all_book_requests():
    return respond(book_requests.list_book_requests(request.args.get("q"), page_arg()))


@bp.route("/admin/book-requests/<int:request_id>", methods=["PATCH"])
def book_request_status(request_id):
    form = DecisionForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(book_requests.update_book_request_status(
        request_id, form.status.data, form.admin_note.data
    ))


# ------------------------------------------------------
# ASK A LIBRARIAN
# ------------------------------------------------------

@bp.route("/library-messages", methods=["POST"])
def send_library_message():
    form = LibraryMessageForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(library_messages.create_library_message(
        form.user_id.data, form.subject.data, form.message.data
    ), 201)


@bp.route("/admin/library-messages")
def all_library_messages():
    return respond(library_messages.list_library_messages(
        request.args.get("q"), request.args.get("status"), page_arg()
    ))


@bp.route("/admin/library-messages/<int:message_id>/reply", methods=["POST"])
def reply_library_message(message_id):
    form = ReplyForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(library_messages.reply_to_library_message(
        message_id, form.admin_id.data, form.admin_response.data
    ))


@bp.route("/admin/library-messages/<int:message_id>/read", methods=["POST"])
def read_library_message(message_id):
    return respond(library_messages.mark_message_as_read(message_id))


# ------------------------------------------------------
# ROOMS
# ------------------------------------------------------

@bp.route("/admin/rooms", methods=["POST"])
def add_room():
    form = RoomForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(rooms.add_room(
        form.room_number.data,
        form.capacity.data,
        (form.room_type.data or "INDIVIDUAL_POD").upper(),
        form.description.data,
    ), 201)


@bp.route("/rooms/available")
def available_rooms():
    form = RoomSearchForm(request.args)
    if not form.validate():
        return invalid(form)
    return respond(rooms.get_available_rooms(
        form.start_time.data, form.end_time.data, form.room_type.data or None
    ))


@bp.route("/rooms/<int:room_id>/bookings", methods=["POST"])
def book_room(room_id):
    form = RoomBookingForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(rooms.book_room(
        room_id,
        form.user_id.data,
        form.start_time.data,
        form.end_time.data,
        notes=form.notes.data,
    ), 201)


@bp.route("/room-bookings/<int:booking_id>/cancel", methods=["POST"])
def cancel_room_booking(booking_id):
    form = UserForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(rooms.cancel_booking(booking_id, form.user_id.data))


@bp.route("/room-bookings/<int:booking_id>/check-in", methods=["POST"])
def check_in(booking_id):
    form = UserForm()
    if not form.validate_on_submit():
        return invalid(form)
    return respond(rooms.check_in_booking(booking_id, form.user_id.data))


# ------------------------------------------------------
# SCHEDULED SWEEPS
# ------------------------------------------------------

@bp.route("/cron/update-fines", methods=["GET", "POST"])
@cron_job
def cron_update_fines():
    overdue = fines.sweep_overdue()
    lost = fines.sweep_lost_books()
    ok = overdue.success and lost.success
    return jsonify({
        "success": ok,
        "overdue": overdue.to_dict(),
        "lost": lost.to_dict(),
    }), 200 if ok else 500


@bp.route("/cron/expire-holds", methods=["GET", "POST"])
@cron_job
def cron_expire_holds():
    return respond(holds.sweep_expired_holds())


@bp.route("/cron/process-bookings", methods=["GET", "POST"])
@cron_job
def cron_process_bookings():
    return respond(rooms.sweep_room_bookings())


def register_commands(app):
    def report(result):
        if result.success:
            click.echo(result.message)
        else:
            click.echo(f"Error: {result.error}", err=True)

    @app.cli.command("sweep-overdue")
    def sweep_overdue_command():
        """Mark overdue loans and create overdue fines."""
        report(fines.sweep_overdue())

    @app.cli.command("sweep-lost")
    def sweep_lost_command():
        """Mark loans more than six weeks overdue as lost."""
        report(fines.sweep_lost_books())

    @app.cli.command("sweep-holds")
    def sweep_holds_command():
        """Expire unclaimed holds and offer the copy to the next reader."""
        report(holds.sweep_expired_holds())

    @app.cli.command("sweep-rooms")
    def sweep_rooms_command():
        """Mark room no-shows and completed bookings."""
        report(rooms.sweep_room_bookings())

    @app.cli.command("run-sweeps")
    def run_sweeps_command():
        """Run every sweep in order."""
        for sweep in (fines.sweep_overdue, fines.sweep_lost_books,
                      holds.sweep_expired_holds, rooms.sweep_room_bookings):
            report(sweep())


# ------------------------------------------------------
# APP FACTORY
# ------------------------------------------------------

def create_app(config_class=Config, notifier=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    init_notifier(app, notifier)
    app.register_blueprint(bp)
    register_commands(app)

    # Auto-create DB tables
    with app.app_context():
        db.create_all()

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
