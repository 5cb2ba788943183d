# ABOUTME: Tests for the resource accountant and ledger
# ABOUTME: Token estimate arithmetic, health bands, fallbacks and reset isolation

"""Tests for accounting module."""

from ralph_sprint.accounting import (
    DEFAULT_BASELINE,
    Ledger,
    ResourceAccountant,
    ResourceStatus,
)
from ralph_sprint.state import StateStore


class TestLedger:
    def test_baseline_only_estimate(self):
        assert Ledger().estimate() == DEFAULT_BASELINE // 4

    def test_round_trip(self):
        ledger = Ledger(bytes_read=10, bytes_written=20, worker_text=30, shell_output=40)
        assert Ledger.from_dict(ledger.to_dict()) == ledger


class TestResourceAccountant:
    def test_estimate_is_bytes_over_four(self):
        accountant = ResourceAccountant()
        accountant.record_read(4000)
        accountant.record_write(1000)
        accountant.record_worker_text(400)
        accountant.record_shell_output(600)
        assert accountant.estimate() == (3000 + 4000 + 1000 + 400 + 600) // 4

    def test_zero_size_write_falls_back_to_lines(self):
        accountant = ResourceAccountant()
        assert accountant.record_write(0, lines=10) == 300
        assert accountant.ledger.bytes_written == 300

    def test_zero_size_read_falls_back_to_lines(self):
        accountant = ResourceAccountant()
        assert accountant.record_read(0, lines=2) == 60

    def test_negative_text_ignored(self):
        accountant = ResourceAccountant()
        accountant.record_worker_text(-5)
        accountant.record_shell_output(-5)
        assert accountant.estimate() == 750

    def test_bands(self):
        accountant = ResourceAccountant(threshold=1000, baseline=0)
        assert accountant.status() == ResourceStatus.HEALTHY

        accountant.record_read(800 * 4)
        assert accountant.status() == ResourceStatus.WARNING

        accountant.record_read(150 * 4)
        assert accountant.status() == ResourceStatus.CRITICAL

    def test_just_below_warning(self):
        accountant = ResourceAccountant(threshold=1000, baseline=0)
        accountant.record_read(799 * 4)
        assert accountant.status() == ResourceStatus.HEALTHY

    def test_reset_isolates_contexts(self):
        accountant = ResourceAccountant()
        accountant.record_read(100000)
        accountant.reset_for_new_context()
        assert accountant.estimate() == DEFAULT_BASELINE // 4
        assert accountant.status() == ResourceStatus.HEALTHY

    def test_flush_persists_ledger(self, tmp_path):
        store = StateStore(tmp_path)
        accountant = ResourceAccountant(store=store)
        accountant.record_read(4000)
        accountant.flush()

        assert store.read_ledger().estimate() == accountant.estimate()

    def test_breakdown_and_summary(self):
        accountant = ResourceAccountant(threshold=80000)
        accountant.record_read(2048)
        assert accountant.breakdown() == "[read:2KB write:0KB assist:0KB shell:0KB]"
        assert accountant.summary("ctx").startswith("ctx: ~1262 tokens")
