import logging
import threading

from ..exceptions import TransportClosed

logger = logging.getLogger(__name__)


class ReportLoop:
    """Sends a compound report every T seconds and a BYE on the way out.

    Args:
        session: Session providing the schedule and report contents
        transport: Channel with send(data, address)
        destination: (host, port) the reports go to
    """

    def __init__(self, session, transport, destination):
        self.session = session
        self.transport = transport
        self.destination = destination
        self.running = False
        self.reports_sent = 0
        self.reporter_thread = None
        self._wakeup = threading.Event()

    def start(self):
        self.running = True
        self.reporter_thread = threading.Thread(target=self._reporter_loop,
                                                name="rtcp-reporter", daemon=True)
        self.reporter_thread.start()
        logger.info(f"Report loop started, first report in "
                    f"{self.session.time_until_next_report():.2f}s")

    def stop(self, timeout=2.0):
        """Request a BYE, wake the sleeping loop and wait for it to exit"""
        self.session.request_bye()
        self._wakeup.set()
        if self.reporter_thread is not None:
            self.reporter_thread.join(timeout=timeout)
            if self.reporter_thread.is_alive():
                logger.warning("Report thread did not stop")
        self.running = False

    def _reporter_loop(self):
        while self.running:
            self._wakeup.wait(self.session.time_until_next_report())
            if self.session.is_bye_requested:
                self._send(bye=True)
                break
            # Woken early: sleep on until tn
            if self.session.time_until_next_report() > 0:
                continue
            self.send_report()

        self.running = False
        logger.info(f"Report loop stopped after {self.reports_sent} reports")

    def send_report(self):
        """Run one report cycle: expire stale members, send, reschedule"""
        self.session.expire_sources()
        return self._send(bye=False)

    def _send(self, bye):
        data = self.session.build_report(bye=bye)
        try:
            self.transport.send(data, self.destination)
        except TransportClosed:
            logger.debug("Report channel already closed")
            self.running = False
            return None
        except OSError as e:
            logger.error(f"Failed to send report: {e}")
            if not bye:
                self.session.report_sent(len(data), success=False)
            return None
        self.reports_sent += 1
        if bye:
            logger.info(f"Sent BYE for SSRC 0x{self.session.ssrc:08x}")
        else:
            self.session.report_sent(len(data))
        return data
