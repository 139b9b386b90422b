"""
Tests for vouching.py and chain_metrics.py
"""

import pytest

from chain_metrics import (
    block_time_from_transactions,
    calculate_block_time,
    relative_time_string,
    usecs_to_ms,
)
from conftest import ALICE, BOB, CAROL, make_transaction
from vouching import (
    VouchEntry,
    VouchStatus,
    classified_view,
    classify,
    count_active,
    epochs_remaining,
    sort_for_display,
)


class TestClassify:
    """Expiry is derived from the epoch a vouch was given"""

    @pytest.mark.parametrize(
        "epoch_given,expected",
        [
            (55, VouchStatus.EXPIRED),
            (20, VouchStatus.EXPIRED),
            (56, VouchStatus.EXPIRING_SOON),
            (65, VouchStatus.EXPIRING_SOON),
            (66, VouchStatus.ACTIVE),
            (100, VouchStatus.ACTIVE),
        ],
    )
    def test_boundaries_at_epoch_100(self, epoch_given, expected):
        assert classify(epoch_given, 100) == expected

    @pytest.mark.parametrize(
        "current_epoch,expected",
        [
            (145, VouchStatus.EXPIRED),
            (136, VouchStatus.EXPIRING_SOON),
            (135, VouchStatus.EXPIRING_SOON),
            (134, VouchStatus.ACTIVE),
            (100, VouchStatus.ACTIVE),
        ],
    )
    def test_vouch_given_at_100_ages(self, current_epoch, expected):
        assert classify(100, current_epoch) == expected

    def test_unknown_epoch_is_pending(self):
        assert classify(10, 0) == VouchStatus.PENDING
        assert classify(10, -1) == VouchStatus.PENDING

    def test_custom_window(self):
        assert classify(90, 100, expiry_window=10, warning_threshold=2) == VouchStatus.EXPIRED
        assert classify(91, 100, expiry_window=10, warning_threshold=2) == VouchStatus.EXPIRING_SOON
        assert classify(93, 100, expiry_window=10, warning_threshold=2) == VouchStatus.ACTIVE

    def test_same_input_same_status(self):
        assert {classify(60, 100) for _ in range(5)} == {VouchStatus.EXPIRING_SOON}

    def test_epochs_remaining(self):
        assert epochs_remaining(60, 100, 45) == 5
        assert epochs_remaining(10, 100, 45) == 0


class TestOrdering:
    """Display order for inbound and outbound lists"""

    def test_active_first_then_expired(self):
        entries = [
            VouchEntry(voucher=ALICE, target=BOB, epoch_given=30),
            VouchEntry(voucher=ALICE, target=CAROL, epoch_given=90),
            VouchEntry(voucher=ALICE, target=BOB, epoch_given=10),
            VouchEntry(voucher=ALICE, target=CAROL, epoch_given=60),
        ]
        ordered = sort_for_display(entries, "target", 100)
        assert [e.epoch_given for e in ordered] == [60, 90, 30, 10]

    def test_ties_break_on_counterpart(self):
        entries = [
            VouchEntry(voucher=CAROL, target=ALICE, epoch_given=80),
            VouchEntry(voucher=BOB, target=ALICE, epoch_given=80),
        ]
        ordered = sort_for_display(entries, "voucher", 100)
        assert [e.voucher for e in ordered] == [BOB, CAROL]

    def test_unknown_epoch_newest_first(self):
        entries = [
            VouchEntry(voucher=ALICE, target=BOB, epoch_given=5),
            VouchEntry(voucher=ALICE, target=CAROL, epoch_given=50),
        ]
        ordered = sort_for_display(entries, "target", 0)
        assert [e.epoch_given for e in ordered] == [50, 5]

    def test_count_active_excludes_expired(self):
        entries = [
            VouchEntry(voucher=ALICE, target=BOB, epoch_given=55),
            VouchEntry(voucher=ALICE, target=CAROL, epoch_given=56),
            VouchEntry(voucher=ALICE, target=BOB, epoch_given=99),
        ]
        assert count_active(entries, 100) == 2
        assert count_active(entries, 0) == 3

    def test_classified_view(self):
        entries = [
            VouchEntry(voucher=BOB, target=ALICE, epoch_given=40),
            VouchEntry(voucher=CAROL, target=ALICE, epoch_given=95),
        ]
        view = classified_view(entries, "voucher", 100)
        assert view == [
            {"address": CAROL, "epoch_given": 95, "status": "active", "epochs_remaining": 40},
            {"address": BOB, "epoch_given": 40, "status": "expired", "epochs_remaining": 0},
        ]

    def test_classified_view_without_epoch(self):
        entries = [VouchEntry(voucher=BOB, target=ALICE, epoch_given=40)]
        assert classified_view(entries, "voucher", 0)[0]["epochs_remaining"] is None


class TestChainMetrics:
    """Block time and relative time helpers"""

    def test_usecs_to_ms(self):
        assert usecs_to_ms("1700000000123456") == 1700000000123

    def test_block_time(self):
        assert calculate_block_time(100, 1000, 110, 2000) == 100.0
        assert calculate_block_time(110, 2000, 100, 1000) == 100.0

    def test_block_time_same_version(self):
        assert calculate_block_time(100, 1000, 100, 5000) is None

    def test_block_time_from_transactions(self):
        txs = [make_transaction(10), make_transaction(12), make_transaction(11)]
        assert block_time_from_transactions(txs) == 1.0

    def test_block_time_needs_two(self):
        assert block_time_from_transactions([make_transaction(10)]) is None
        assert block_time_from_transactions([]) is None

    def test_block_time_missing_timestamp(self):
        txs = [make_transaction(10), make_transaction(12, timestamp_usecs=0)]
        assert block_time_from_transactions(txs) is None

    @pytest.mark.parametrize(
        "age_ms,expected",
        [
            (0, "just now"),
            (59_000, "just now"),
            (60_000, "1m ago"),
            (59 * 60_000, "59m ago"),
            (3 * 3_600_000, "3h ago"),
            (2 * 86_400_000, "2d ago"),
        ],
    )
    def test_relative_time(self, age_ms, expected):
        now = 1_700_000_000_000
        assert relative_time_string(now - age_ms, now) == expected

    def test_relative_time_old_dates(self):
        now = 1_700_000_000_000
        assert relative_time_string(0, now) == "1970-01-01 00:00:00 UTC"
