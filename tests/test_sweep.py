from datetime import timedelta

from models import BorrowStatus
from services.ledger import BorrowLedger
from services.lending import LendingService


async def test_sweep_marks_only_past_due_borrowed_records(lending, make_book, make_user, clock, ledger):
    book = await make_book(total_copies=3)
    late = await make_user("late")
    fresh = await make_user("fresh")
    late_record = await lending.borrow(late.id, book.id)
    clock.advance(days=10)
    fresh_record = await lending.borrow(fresh.id, book.id)
    clock.advance(days=5)

    affected = await lending.sweep_overdue()

    assert [r.id for r in affected] == [late_record.id]
    assert affected[0].status == BorrowStatus.OVERDUE
    assert affected[0].fine == 0
    assert (await ledger.get(late_record.id)).status == BorrowStatus.OVERDUE
    assert (await ledger.get(fresh_record.id)).status == BorrowStatus.BORROWED


async def test_sweep_is_idempotent(lending, make_book, make_user, clock, notifier):
    book = await make_book()
    alice = await make_user("alice")
    await lending.borrow(alice.id, book.id)
    clock.advance(days=20)

    first = await lending.sweep_overdue()
    second = await lending.sweep_overdue()

    assert len(first) == 1
    assert second == []
    assert len(notifier.sent) == 1


async def test_sweep_leaves_returned_records_alone(lending, make_book, make_user, clock, ledger):
    book = await make_book()
    alice = await make_user("alice")
    record = await lending.borrow(alice.id, book.id)
    await lending.return_book(record.id, alice)
    clock.advance(days=30)

    assert await lending.sweep_overdue() == []
    stored = await ledger.get(record.id)
    assert stored.status == BorrowStatus.RETURNED
    assert stored.fine == 0


async def test_sweep_does_not_overwrite_concurrent_return(lending, make_book, make_user, clock, ledger, assert_counters):
    book = await make_book(total_copies=1)
    alice = await make_user("alice")
    record = await lending.borrow(alice.id, book.id)
    clock.advance(days=15)

    # The sweep has selected the record, then the user returns it first
    due = await ledger.find_due(clock.now)
    await lending.return_book(record.id, alice)
    assert await ledger.mark_overdue(due[0].id, clock.now) is None

    stored = await ledger.get(record.id)
    assert stored.status == BorrowStatus.RETURNED
    assert await assert_counters(book.id) == 1


async def test_sweep_notifies_borrower(lending, make_book, make_user, clock, notifier):
    book = await make_book(title="Dune")
    alice = await make_user("alice")
    record = await lending.borrow(alice.id, book.id)
    clock.advance(days=14, seconds=1)

    await lending.sweep_overdue()

    assert len(notifier.sent) == 1
    email, notice = notifier.sent[0]
    assert email == "alice@example.com"
    assert notice.username == "alice"
    assert notice.book_title == "Dune"
    assert notice.due_date == record.due_date


async def test_notifier_failures_do_not_stop_the_sweep(lending, make_book, make_user, clock, notifier, ledger):
    book = await make_book(total_copies=3)
    broken = await make_user("broken")
    refused = await make_user("refused")
    fine = await make_user("fine")
    notifier.raise_for.add(broken.email)
    notifier.fail_for.add(refused.email)
    records = [await lending.borrow(u.id, book.id) for u in (broken, refused, fine)]
    clock.advance(days=15)

    affected = await lending.sweep_overdue()

    assert len(affected) == 3
    for record in records:
        assert (await ledger.get(record.id)).status == BorrowStatus.OVERDUE
    assert [email for email, _ in notifier.sent] == [fine.email]


async def test_fine_uses_original_due_date_not_sweep_time(lending, make_book, make_user, clock):
    book = await make_book()
    alice = await make_user("alice")
    record = await lending.borrow(alice.id, book.id)
    clock.now = record.due_date + timedelta(hours=30)
    await lending.sweep_overdue()
    clock.now = record.due_date + timedelta(days=3)

    returned = await lending.return_book(record.id, alice)

    assert returned.fine == 15


async def test_default_notifier_only_logs(db, inventory, clock, make_book, make_user, caplog):
    service = LendingService(inventory, BorrowLedger(db), clock=clock)
    book = await make_book()
    alice = await make_user("alice")
    await service.borrow(alice.id, book.id)
    clock.advance(days=15)

    with caplog.at_level("INFO"):
        affected = await service.sweep_overdue()

    assert len(affected) == 1
    assert "Overdue notice for alice" in caplog.text
