from migration import find_drift, reconcile


async def test_consistent_library_has_no_drift(db, lending, make_book, make_user):
    book = await make_book(total_copies=2)
    alice = await make_user("alice")
    await lending.borrow(alice.id, book.id)

    assert await find_drift(db) == []


async def test_drift_is_reported_and_fixed(db, lending, make_book, make_user, assert_counters):
    book = await make_book(total_copies=3)
    alice = await make_user("alice")
    await lending.borrow(alice.id, book.id)
    await db.books.update_one({"id": book.id}, {"$set": {"available_copies": 3}})

    drift = await find_drift(db)
    assert len(drift) == 1
    assert drift[0]["book_id"] == book.id
    assert drift[0]["open_records"] == 1
    assert drift[0]["expected_available"] == 2

    fixed, skipped = await reconcile(db)

    assert [e["book_id"] for e in fixed] == [book.id]
    assert skipped == []
    assert await assert_counters(book.id) == 2
    assert await find_drift(db) == []


async def test_overcommitted_book_is_skipped(db, lending, make_book, make_user):
    book = await make_book(total_copies=2)
    for name in ("ann", "ben"):
        user = await make_user(name)
        await lending.borrow(user.id, book.id)
    await db.books.update_one({"id": book.id}, {"$set": {"total_copies": 1, "available_copies": 1}})

    fixed, skipped = await reconcile(db)

    assert fixed == []
    assert [e["expected_available"] for e in skipped] == [-1]
    assert (await db.books.find_one({"id": book.id}))["available_copies"] == 1
