"""
Exceptions raised by the session engine
"""


class SessionError(Exception):
    """Base class for all session engine errors"""


class NegotiationError(SessionError):
    """The device lacks the capability or rejected the setup exchange"""


class AddressResolutionError(SessionError):
    """A configured hostname or IP address could not be resolved"""


class DecoderError(SessionError):
    """The external decoder could not be spawned, fed or released"""


class TransportClosed(SessionError):
    """Raised by a blocking receive once its transport has been closed"""
