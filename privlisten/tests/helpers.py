"""
Test doubles shared by the session tests
"""

import queue

from ..exceptions import DecoderError, TransportClosed


class FixedRng:
    """Stands in for numpy's Generator with fixed draws"""

    def __init__(self, value=0.5, ssrc=0x1234):
        self.value = value
        self.ssrc = ssrc

    def random(self):
        return self.value

    def integers(self, low, high):
        return self.ssrc


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTransport:
    """In-memory datagram channel; receive() blocks until a datagram or close()"""

    def __init__(self, bind_port=0, group=None):
        self.bind_port = bind_port
        self.group = group
        self.sent = []
        self.closed = False
        self._inbox = queue.Queue()

    def inject(self, data, addr=("10.0.0.2", 5000)):
        self._inbox.put((data, addr))

    def send(self, data, address):
        if self.closed:
            raise TransportClosed("closed")
        self.sent.append((data, address))

    def receive(self):
        item = self._inbox.get()
        if item is None or self.closed:
            raise TransportClosed("closed")
        return item

    def close(self):
        self.closed = True
        self._inbox.put(None)


class FakeSink:
    def __init__(self, events=None, fail_acquire=False, fail_release=False, acquire_error=None):
        self.events = events if events is not None else []
        self.fail_acquire = fail_acquire
        self.fail_release = fail_release
        self.acquire_error = acquire_error
        self.fed = []
        self.acquired = 0
        self.released = 0

    def acquire(self, input_address):
        if self.acquire_error is not None:
            raise self.acquire_error
        if self.fail_acquire:
            raise DecoderError("spawn failed")
        self.acquired += 1
        self.events.append("decoder.acquire")
        return {"address": input_address}

    def feed(self, handle, data):
        self.fed.append(data)

    def release(self, handle):
        self.released += 1
        self.events.append("decoder.release")
        if self.fail_release:
            raise DecoderError("release failed")
