"""
RTCP transmission interval (RFC 3550, appendix A.7)
"""

from collections import namedtuple

# Minimum average time between RTCP packets from this site, in seconds.
# Keeps reports from clumping in small sessions and during network partitions.
RTCP_MIN_TIME = 5.0

# Share of the RTCP bandwidth reserved for active senders. With one or two
# senders this makes the computed interval close to the minimum.
SENDER_BW_FRACTION = 0.25
RCVR_BW_FRACTION = 1 - SENDER_BW_FRACTION

# Fraction of the session bandwidth given to RTCP
RTCP_BW_FRACTION = 0.05

Interval = namedtuple('Interval', ['T', 'Td', 'rtcp_bw'])


def compute_interval(members, senders, we_are_sender, initial, avg_rtcp_size, rtcp_bw, rng):
    """Compute the deterministic (Td) and randomized (T) report interval.

    Args:
        members: Number of entries in the source table, self included
        senders: Number of active senders
        we_are_sender: True if this session's own source is an active sender
        initial: True until the first report has been sent
        avg_rtcp_size: Running average report size in octets
        rtcp_bw: RTCP bandwidth in octets/sec
        rng: numpy Generator supplying the interval jitter

    Returns:
        Interval(T, Td, rtcp_bw) where rtcp_bw is the bandwidth actually used
        after the sender/receiver split.
    """
    if rtcp_bw <= 0:
        raise ValueError(f"rtcp_bw must be positive, got {rtcp_bw}")

    # The first call halves the minimum for quicker notification while still
    # leaving time to learn about other sources.
    min_time = RTCP_MIN_TIME / 2 if initial else RTCP_MIN_TIME

    n = members
    if 0 < senders < members * SENDER_BW_FRACTION:
        if we_are_sender:
            rtcp_bw *= SENDER_BW_FRACTION
            n = senders
        else:
            rtcp_bw *= RCVR_BW_FRACTION
            n = members - senders

    t = max(avg_rtcp_size * n / rtcp_bw, min_time)

    # Uniform in [0.5, 1.5] to avoid synchronized bursts across participants
    noise = float(rng.random()) + 0.5
    return Interval(T=t * noise, Td=t, rtcp_bw=rtcp_bw)


def member_timeout(td, intervals=5):
    """Silence after which a member is considered gone (RFC 3550 6.3.5)"""
    return intervals * max(td, RTCP_MIN_TIME)
