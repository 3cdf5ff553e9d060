from flask_wtf import FlaskForm
from wtforms import DateField, DateTimeField, FloatField, IntegerField, StringField, TextAreaField
from wtforms.validators import DataRequired, Email, InputRequired, Length, NumberRange, Optional

DATETIME_FORMATS = ["%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M"]


class ApiForm(FlaskForm):
    # JSON API: callers are authenticated upstream, so no CSRF token
    class Meta:
        csrf = False


class BookForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=255)])
    author = StringField("Author", validators=[DataRequired(), Length(max=255)])
    genre = StringField("Genre", validators=[Optional(), Length(max=255)])
    description = TextAreaField("Description", validators=[Optional()])
    # NumberRange alone: a JSON 0 is valid, a missing value is not
    total_copies = IntegerField("Total copies", validators=[NumberRange(min=0)])


class RegisterForm(ApiForm):
    fullname = StringField("Full name", validators=[DataRequired(), Length(max=255)])
    email = StringField("Email", validators=[DataRequired(), Email()])
    university_id = IntegerField("University ID", validators=[InputRequired()])


class AccountStatusForm(ApiForm):
    status = StringField("Status", validators=[DataRequired()])


class RoleForm(ApiForm):
    role = StringField("Role", validators=[DataRequired()])


class BorrowForm(ApiForm):
    user_id = IntegerField("User", validators=[InputRequired()])
    book_id = IntegerField("Book", validators=[InputRequired()])


class UserForm(ApiForm):
    user_id = IntegerField("User", validators=[InputRequired()])


class BorrowStatusForm(ApiForm):
    status = StringField("Status", validators=[DataRequired()])


class WaiveFineForm(ApiForm):
    admin_id = IntegerField("Admin", validators=[InputRequired()])
    reason = TextAreaField("Reason", validators=[DataRequired()])


class DamageFineForm(ApiForm):
    amount = FloatField("Amount", validators=[InputRequired(), NumberRange(min=0.01)])
    description = TextAreaField("Description", validators=[Optional()])


class ExtensionRequestForm(ApiForm):
    user_id = IntegerField("User", validators=[InputRequired()])
    borrow_record_id = IntegerField("Borrow record", validators=[InputRequired()])
    requested_due_date = DateField("Requested due date", validators=[InputRequired()])
    reason = TextAreaField("Reason", validators=[Optional()])


class DecisionForm(ApiForm):
    status = StringField("Status", validators=[DataRequired()])
    admin_note = TextAreaField("Admin note", validators=[Optional()])


class BookRequestForm(ApiForm):
    user_id = IntegerField("User", validators=[InputRequired()])
    title = StringField("Title", validators=[DataRequired(), Length(max=255)])
    author = StringField("Author", validators=[Optional(), Length(max=255)])
    genre = StringField("Genre", validators=[Optional(), Length(max=255)])
    description = TextAreaField("Description", validators=[Optional()])


class RoomForm(ApiForm):
    room_number = StringField("Room number", validators=[DataRequired(), Length(max=50)])
    capacity = IntegerField("Capacity", validators=[InputRequired(), NumberRange(min=1)])
    room_type = StringField("Room type", default="INDIVIDUAL_POD")
    description = TextAreaField("Description", validators=[Optional()])


class RoomSearchForm(ApiForm):
    start_time = DateTimeField("Start", format=DATETIME_FORMATS, validators=[InputRequired()])
    end_time = DateTimeField("End", format=DATETIME_FORMATS, validators=[InputRequired()])
    room_type = StringField("Room type", validators=[Optional()])


class RoomBookingForm(ApiForm):
    user_id = IntegerField("User", validators=[InputRequired()])
    start_time = DateTimeField("Start", format=DATETIME_FORMATS, validators=[InputRequired()])
    end_time = DateTimeField("End", format=DATETIME_FORMATS, validators=[InputRequired()])
    notes = TextAreaField("Notes", validators=[Optional()])


class ReviewForm(ApiForm):
    user_id = IntegerField("User", validators=[InputRequired()])
    rating = IntegerField("Rating", validators=[InputRequired(), NumberRange(min=1, max=5)])
    comment = TextAreaField("Comment", validators=[Optional()])


class LibraryMessageForm(ApiForm):
    user_id = IntegerField("User", validators=[InputRequired()])
    subject = StringField("Subject", validators=[DataRequired(), Length(max=255)])
    message = TextAreaField("Message", validators=[DataRequired()])


class ReplyForm(ApiForm):
    admin_id = IntegerField("Admin", validators=[InputRequired()])
    admin_response = TextAreaField("Response", validators=[DataRequired()])
