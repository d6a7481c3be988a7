"""
Tests for the SSRC membership table
"""

import unittest

from ..core.source import Source, SourceTable

SELF = 0x1234


class TestSourceTable(unittest.TestCase):
    def setUp(self):
        self.table = SourceTable()
        self.table.add(SELF)

    def test_get_or_create_is_idempotent(self):
        first = self.table.get_or_create(0xABCD)
        second = self.table.get_or_create(0xABCD)
        self.assertIs(first, second)
        self.assertEqual(self.table.count(), 2)
        self.assertFalse(first.is_active_sender)

    def test_duplicate_add_keeps_existing(self):
        source = self.table.get_or_create(0xABCD)
        source.is_active_sender = True
        self.assertIs(self.table.add(0xABCD), source)
        self.assertTrue(self.table.get(0xABCD).is_active_sender)
        self.assertEqual(self.table.count(), 2)

    def test_remove_unknown_is_noop(self):
        self.assertFalse(self.table.remove(0xDEAD))
        self.assertEqual(self.table.count(), 1)

    def test_remove(self):
        self.table.get_or_create(0xABCD)
        self.assertTrue(self.table.remove(0xABCD))
        self.assertNotIn(0xABCD, self.table)

    def test_count_active_senders(self):
        for ssrc in (1, 2, 3):
            self.table.get_or_create(ssrc)
        self.table.get(2).is_active_sender = True
        self.assertEqual(self.table.count(), 4)
        self.assertEqual(self.table.count_active_senders(), 1)

    def test_remove_all_except_self(self):
        for ssrc in range(1, 20):
            self.table.get_or_create(ssrc)
        self.assertEqual(self.table.remove_all_except_self(SELF), 1)
        self.assertEqual([s.ssrc for s in self.table.snapshot_all()], [SELF])

    def test_remove_all_except_self_on_self_only_table(self):
        self.assertEqual(self.table.remove_all_except_self(SELF), 1)

    def test_snapshot_is_stable_under_mutation(self):
        self.table.get_or_create(0xABCD)
        snapshot = self.table.snapshot_all()
        self.table.remove(0xABCD)
        self.table.get_or_create(0xBEEF).is_active_sender = True
        self.assertEqual(sorted(s.ssrc for s in snapshot), sorted([SELF, 0xABCD]))
        self.assertFalse(any(s.is_active_sender for s in snapshot))


class TestSource(unittest.TestCase):
    def test_record_rtp_marks_sender(self):
        source = Source(0xABCD)
        source.record_rtp(seq_num=10, payload_size=160, now=5.0)
        self.assertTrue(source.is_active_sender)
        self.assertEqual(source.last_rtp_time, 5.0)
        self.assertEqual(source.octets_received, 160)

    def test_loss_accounting_across_wrap(self):
        source = Source(1)
        for seq in (65533, 65534, 65535, 1, 2):  # 0 missing
            source.record_rtp(seq, 10, 0.0)
        self.assertEqual(source.expected, 6)
        self.assertEqual(source.cumulative_lost, 1)

        block = source.report_block(now=1.0)
        self.assertEqual(block.cumulative_lost, 1)
        self.assertEqual(block.fraction_lost, (1 << 8) // 6)
        self.assertEqual(block.highest_seq, (1 << 16) + 2)

        # next interval starts from the previous counts
        source.record_rtp(3, 10, 2.0)
        self.assertEqual(source.report_block(now=2.0).fraction_lost, 0)


if __name__ == '__main__':
    unittest.main()
