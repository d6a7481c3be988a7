"""
Tests for the session state record and its operations
"""

import unittest
from unittest import mock

import numpy as np

from ..core import session as session_module
from ..core.packet import RTCPPacket, RTPPacket
from ..core.session import Session, SessionState
from .helpers import FakeClock, FixedRng


def rtp(ssrc, seq=0, timestamp=0, payload=b'\x00' * 160):
    return RTPPacket(payload_type=97, seq_num=seq, timestamp=timestamp, ssrc=ssrc, payload=payload)


class TestSessionInitialize(unittest.TestCase):
    def test_rtcp_bandwidth_is_five_percent(self):
        for bandwidth in (1, 64000, 10000.5):
            session = Session(bandwidth, rng=np.random.default_rng(1))
            self.assertEqual(session.state.rtcp_bw, 0.05 * bandwidth)
            self.assertEqual(session.member_count(), 1)
            self.assertEqual(session.snapshot_sources()[0].ssrc, session.ssrc)

    def test_ssrc_is_non_negative_31_bit(self):
        rng = np.random.default_rng(3)
        for _ in range(50):
            ssrc = Session(10000, rng=rng).ssrc
            self.assertGreaterEqual(ssrc, 0)
            self.assertLess(ssrc, 2 ** 31)

    def test_initial_schedule(self):
        clock = FakeClock(100.0)
        session = Session(10000, rng=FixedRng(0.5), clock=clock)
        s = session.state
        self.assertTrue(s.initial)
        self.assertEqual(s.pmembers, 1)
        self.assertEqual(s.Td, 2.5)
        self.assertEqual(s.tn, 100.0 + s.T)
        self.assertEqual(session.time_until_next_report(), s.T)

    def test_rejects_non_positive_bandwidth(self):
        with self.assertRaises(ValueError):
            SessionState(0)


class TestCalculateInterval(unittest.TestCase):
    def test_scenario_ten_kilobyte_session(self):
        session = Session(10000, rng=np.random.default_rng(11))
        self.assertEqual(session.state.rtcp_bw, 500)
        session.state.avg_rtcp_size = 80
        for _ in range(100):
            session.calculate_interval()
            self.assertEqual(session.state.Td, 2.5)
            self.assertTrue(1.25 <= session.state.T <= 3.75)

    def _session_with_one_remote_sender(self, legacy):
        session = Session(10000, rng=FixedRng(0.5), legacy_bandwidth_scaling=legacy)
        for ssrc in range(1, 10):
            session.get_source(ssrc)
        session.record_rtp_packet(rtp(1), 172)
        return session

    def test_bandwidth_recomputed_each_call(self):
        session = self._session_with_one_remote_sender(legacy=False)
        for _ in range(3):
            session.calculate_interval()
        self.assertEqual(session.state.rtcp_bw, 500)

    def test_legacy_scaling_is_cumulative(self):
        session = self._session_with_one_remote_sender(legacy=True)
        session.calculate_interval()
        session.calculate_interval()
        self.assertAlmostEqual(session.state.rtcp_bw, 500 * 0.75 * 0.75)


class TestMembership(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(1000.0)
        self.session = Session(10000, rng=FixedRng(0.5, ssrc=0x77), clock=self.clock)

    def test_first_packet_adds_sender(self):
        self.assertEqual(self.session.member_count(), 1)
        self.assertEqual(self.session.sender_count(), 0)
        self.session.record_rtp_packet(rtp(0xABCD), 172)
        self.assertEqual(self.session.member_count(), 2)
        self.assertEqual(self.session.sender_count(), 1)

    def test_self_is_never_removed(self):
        self.assertFalse(self.session.remove_source(0x77))
        self.assertEqual(self.session.member_count(), 1)

    def test_remove_unknown_source(self):
        self.assertFalse(self.session.remove_source(0xDEAD))
        self.assertEqual(self.session.member_count(), 1)

    def test_remove_all_sources(self):
        for ssrc in range(1, 8):
            self.session.record_rtp_packet(rtp(ssrc), 172)
        self.session.state.pmembers = 8
        self.assertEqual(self.session.remove_all_sources(), 1)
        self.assertEqual(self.session.state.pmembers, 1)
        self.assertEqual(self.session.my_source().ssrc, 0x77)

    def test_inbound_bye_removes_source(self):
        self.session.record_rtp_packet(rtp(0xABCD), 172)
        data = RTCPPacket.receiver_report(0xABCD).encode() + RTCPPacket.bye(0xABCD, 0x77).encode()
        self.session.record_rtcp_packet(RTCPPacket.decode_compound(data), len(data))
        self.assertEqual(self.session.member_count(), 1)
        self.assertIsNotNone(self.session.my_source())

    def test_inbound_sender_report_tracks_member(self):
        packets = [RTCPPacket.sender_report(0xBEEF, 5, 800, now=self.clock())]
        self.session.record_rtcp_packet(packets, 28)
        source = self.session.get_source(0xBEEF)
        self.assertEqual(source.last_seen, 1000.0)
        self.assertNotEqual(source.last_sr, 0)
        self.assertFalse(source.is_active_sender)

    def test_silent_member_expires(self):
        self.session.record_rtp_packet(rtp(0xABCD), 172)
        self.clock.advance(5 * 5.0 - 1)
        self.assertEqual(self.session.expire_sources(), [])
        self.clock.advance(2)
        self.assertEqual(self.session.expire_sources(), [0xABCD])
        self.assertEqual(self.session.member_count(), 1)

    def test_quiet_sender_becomes_receiver(self):
        self.session.record_rtp_packet(rtp(0xABCD), 172)
        self.session.get_source(0xABCD).last_seen = self.clock() + 100
        self.clock.advance(2 * self.session.state.T + 0.1)
        self.session.expire_sources()
        self.assertEqual(self.session.member_count(), 2)
        self.assertEqual(self.session.sender_count(), 0)


class TestReports(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(1000.0)
        self.session = Session(10000, rng=FixedRng(0.5, ssrc=0x77), clock=self.clock,
                               cname="test@host")

    def test_first_report_is_sender_report(self):
        packets = RTCPPacket.decode_compound(self.session.build_report())
        self.assertEqual(packets[0].packet_type, RTCPPacket.PT_SR)
        self.assertEqual(packets[0].ssrc, 0x77)
        self.assertEqual(packets[1].cname, "test@host")

    def test_report_sent_updates_schedule(self):
        self.session.record_rtp_packet(rtp(0xABCD, seq=1), 172)
        data = self.session.build_report()
        self.clock.advance(3.0)
        self.session.report_sent(len(data))

        s = self.session.state
        self.assertFalse(s.initial)
        self.assertFalse(s.we_sent)
        self.assertEqual(s.pmembers, 2)
        self.assertEqual(s.time_of_last_rtcp_sent, 1003.0)
        self.assertEqual(s.tc, 1003.0)
        self.assertEqual(s.Td, 5.0)
        self.assertEqual(s.tn, 1003.0 + s.T)
        self.assertAlmostEqual(s.avg_rtcp_size, (len(data) + 28) / 16.0)

        packets = RTCPPacket.decode_compound(self.session.build_report())
        self.assertEqual(packets[0].packet_type, RTCPPacket.PT_RR)
        self.assertEqual([b.ssrc for b in packets[0].report_blocks], [0xABCD])

    def test_we_sent_tracks_two_reports_back(self):
        self.session.report_sent(40)
        self.session.state.packet_count = 3
        self.session.report_sent(40)
        self.assertTrue(self.session.state.we_sent)
        self.session.report_sent(40)
        self.assertTrue(self.session.state.we_sent)
        self.session.report_sent(40)
        self.assertFalse(self.session.state.we_sent)

    def test_failed_send_keeps_initial(self):
        self.session.report_sent(40, success=False)
        self.assertTrue(self.session.state.initial)
        self.assertEqual(self.session.state.avg_rtcp_size, 0)

    def test_bye_report(self):
        packets = RTCPPacket.decode_compound(self.session.build_report(bye=True))
        self.assertEqual([p.packet_type for p in packets],
                         [RTCPPacket.PT_RR, RTCPPacket.PT_SDES, RTCPPacket.PT_BYE])
        self.assertEqual(packets[-1].sources, [0x77])


if __name__ == '__main__':
    unittest.main()


class TestLoggingOutsideLock(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(1000.0)
        self.session = Session(10000, rng=FixedRng(0.5, ssrc=0x77), clock=self.clock)
        self.held = []
        logger = mock.patch.object(session_module, "logger").start()
        self.addCleanup(mock.patch.stopall)
        for level in (logger.debug, logger.info, logger.warning):
            level.side_effect = lambda *args, **kwargs: self.held.append(self.session.lock.locked())

    def test_remove_source(self):
        self.session.record_rtp_packet(rtp(0xABCD), 172)
        self.session.remove_source(0xABCD)
        self.session.remove_source(0x77)
        self.session.remove_source(0xDEAD)
        self.assertEqual(len(self.held), 3)
        self.assertNotIn(True, self.held)

    def test_report_sent_and_expiry(self):
        self.session.record_rtp_packet(rtp(0xABCD), 172)
        self.clock.advance(1000.0)
        self.session.expire_sources()
        self.session.report_sent(120)
        self.assertGreaterEqual(len(self.held), 2)
        self.assertNotIn(True, self.held)
