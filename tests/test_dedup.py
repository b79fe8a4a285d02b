from bookhaven_personalize.dedup import EventDeduplicator, dedup_key


def test_repeat_within_window_is_suppressed() -> None:
    dedup = EventDeduplicator()

    assert not dedup.should_suppress("book_viewed", "blt1", "s1", now=0)
    assert dedup.should_suppress("book_viewed", "blt1", "s1", now=5_000)


def test_repeat_after_window_is_allowed() -> None:
    dedup = EventDeduplicator()

    assert not dedup.should_suppress("book_viewed", "blt1", "s1", now=0)
    assert not dedup.should_suppress("book_viewed", "blt1", "s1", now=11_000)


def test_suppressed_event_does_not_extend_window() -> None:
    dedup = EventDeduplicator()

    dedup.should_suppress("book_viewed", "blt1", "s1", now=0)
    assert dedup.should_suppress("book_viewed", "blt1", "s1", now=9_000)
    assert not dedup.should_suppress("book_viewed", "blt1", "s1", now=10_500)


def test_keys_are_scoped_by_book_and_session() -> None:
    dedup = EventDeduplicator()

    dedup.should_suppress("book_viewed", "blt1", "s1", now=0)

    assert not dedup.should_suppress("book_viewed", "blt2", "s1", now=1)
    assert not dedup.should_suppress("book_viewed", "blt1", "s2", now=2)
    assert not dedup.should_suppress("book_purchased", "blt1", "s1", now=3)
    assert dedup_key("page_view", None, None) == "page_view_unknown_"


def test_sweep_drops_entries_past_retention() -> None:
    dedup = EventDeduplicator()
    dedup.should_suppress("a", "1", "s", now=0)
    dedup.should_suppress("b", "1", "s", now=200_000)

    removed = dedup.sweep(now=350_000)

    assert removed == 1
    assert len(dedup) == 1


def test_sweeper_thread_starts_and_stops() -> None:
    dedup = EventDeduplicator(sweep_interval_seconds=0.01)

    dedup.start()
    dedup.start()
    dedup.stop()

    assert dedup._sweeper is None
