"""
Command line interface for the listening session
"""

import argparse
import dataclasses
import logging
import threading
import time

from .config import SessionConfig, default_config
from .core.lifecycle import ConnectionListener, Connector, set_debug_mode
from .utils.handshake import StaticHandshake

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Private listening session')
    parser.add_argument('--device', required=True, help='Address of the streaming device')
    parser.add_argument('--config', type=str, help='Path to configuration file')
    parser.add_argument('--local-address', default=None,
                        help='Address the device streams to (default: this host)')
    parser.add_argument('--rtp-port', type=int, default=None)
    parser.add_argument('--rtcp-port', type=int, default=None)
    parser.add_argument('--payload-type', type=int, default=None)
    parser.add_argument('--bandwidth', type=float, default=None,
                        help='Session bandwidth in bytes/sec')
    parser.add_argument('--decoder', choices=['ffplay', 'wav'], default=None)
    parser.add_argument('--wav', dest='wav_path', default=None,
                        help='Output file when --decoder wav')
    parser.add_argument('--duration', type=float, default=None,
                        help='Seconds to listen, default until interrupted')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')
    parser.add_argument('--debug', action='store_true', help='Enable session diagnostics')
    return parser.parse_args(argv)


def build_config(args):
    config = SessionConfig.from_file(args.config) if args.config else dataclasses.replace(default_config)

    # Override config with command line arguments
    for field in ('local_address', 'rtp_port', 'rtcp_port', 'payload_type',
                  'bandwidth', 'decoder', 'wav_path'):
        value = getattr(args, field)
        if value is not None:
            setattr(config, field, value)
    config.validate()
    return config


class _Listener(ConnectionListener):
    def __init__(self):
        self.session = None
        self.error = None
        self.done = threading.Event()

    def on_connected(self, session):
        self.session = session
        self.done.set()

    def on_failure(self, error):
        self.error = error
        self.done.set()


def main(argv=None):
    args = parse_args(argv)

    logging.getLogger().setLevel(args.log_level)
    if args.debug:
        set_debug_mode(True)

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    handshake = StaticHandshake(args.local_address or config.local_address)
    connector = Connector(handshake, config)
    listener = _Listener()

    connector.connect(args.device, listener)
    listener.done.wait()
    if listener.error is not None:
        logger.error(f"Could not connect to {args.device}: {listener.error}")
        return 1

    session = listener.session
    try:
        start = time.time()
        while args.duration is None or time.time() - start < args.duration:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        connector.disconnect(session)
        logger.info("Cleanup completed")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
