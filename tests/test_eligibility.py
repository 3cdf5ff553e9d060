from eligibility import apply_eligibility_consequence, check_eligibility, evaluate_eligibility
from models import BorrowStatus, FineStatus, UserStatus, db
from results import NOT_FOUND


def test_clean_record_is_eligible(make_user):
    user = make_user()
    result = evaluate_eligibility(user.id)
    assert result.is_eligible
    assert result.reason == "You are eligible to borrow books"
    assert result.overdue_count == 0
    assert result.unpaid_fine_count == 0
    assert result.total_unpaid_fine_amount == 0


def test_overdue_record_makes_user_ineligible(make_user, make_book, make_borrow):
    user = make_user()
    make_borrow(user, make_book(), due_in_days=-2, status=BorrowStatus.OVERDUE)

    result = evaluate_eligibility(user.id)
    assert not result.is_eligible
    assert result.overdue_count == 1
    assert "overdue books" in result.reason


def test_lost_record_counts_as_overdue(make_user, make_book, make_borrow):
    user = make_user()
    make_borrow(user, make_book(), due_in_days=-60, status=BorrowStatus.LOST)
    assert evaluate_eligibility(user.id).overdue_count == 1


def test_unpaid_fines_are_summed(make_user, make_book, make_borrow, make_fine):
    user = make_user()
    record = make_borrow(user, make_book(), status=BorrowStatus.RETURNED)
    make_fine(record, amount=15)
    other = make_borrow(user, make_book(), status=BorrowStatus.RETURNED)
    make_fine(other, amount=25)
    make_fine(other, amount=100, fine_type="LOST", status=FineStatus.PAID)

    result = evaluate_eligibility(user.id)
    assert not result.is_eligible
    assert result.unpaid_fine_count == 2
    assert result.total_unpaid_fine_amount == 40
    assert result.reason.startswith("You have unpaid fines totaling 40")


def test_overdue_reason_wins_over_fines(make_user, make_book, make_borrow, make_fine):
    user = make_user()
    record = make_borrow(user, make_book(), due_in_days=-3, status=BorrowStatus.OVERDUE)
    make_fine(record, amount=15, fine_type="OVERDUE")

    result = evaluate_eligibility(user.id)
    assert result.overdue_count == 1
    assert result.unpaid_fine_count == 1
    assert "overdue books" in result.reason


def test_check_eligibility_unknown_user(app):
    result = check_eligibility(999)
    assert not result.success
    assert result.kind == NOT_FOUND


def test_check_eligibility_does_not_block(make_user, make_book, make_borrow):
    user = make_user()
    make_borrow(user, make_book(), due_in_days=-2, status=BorrowStatus.OVERDUE)

    result = check_eligibility(user.id)
    assert result.success
    assert result.data["is_eligible"] is False
    db.session.expire_all()
    assert user.status == UserStatus.APPROVED


def test_consequence_blocks_then_unblocks(make_user, make_book, make_borrow, make_fine):
    user = make_user()
    record = make_borrow(user, make_book(), status=BorrowStatus.RETURNED)
    fine = make_fine(record)

    result = apply_eligibility_consequence(user.id)
    assert result.data["action"] == "blocked"
    assert user.status == UserStatus.BLOCKED

    fine.status = FineStatus.PAID
    db.session.commit()
    result = apply_eligibility_consequence(user.id)
    assert result.data["action"] == "unblocked"
    assert user.status == UserStatus.APPROVED


def test_consequence_leaves_pending_accounts_alone(make_user, make_book, make_borrow, make_fine):
    user = make_user(status=UserStatus.PENDING)
    make_fine(make_borrow(user, make_book(), status=BorrowStatus.RETURNED))

    result = apply_eligibility_consequence(user.id)
    assert result.data["action"] == "none"
    assert user.status == UserStatus.PENDING


def test_consequence_noop_for_eligible_approved_user(make_user):
    user = make_user()
    assert apply_eligibility_consequence(user.id).data["action"] == "none"
