"""
Simulator Exceptions
Error hierarchy shared by the server, the client and the loaders.
"""


class MBusSimError(Exception):
    """Base exception for all simulator errors."""


class DescriptionError(MBusSimError):
    """Device description (XML) could not be parsed or is unusable."""


class TelegramFormatError(MBusSimError):
    """Template telegram could not be decoded or is not a long frame."""


class ValueFieldNotFoundError(MBusSimError):
    """BCD value signature is missing from the template telegram."""


class ValueFieldOverrunError(MBusSimError):
    """Value field would be written past the telegram payload."""


class MBusReadError(MBusSimError):
    """A client read attempt ended without a complete frame."""


class MBusTimeoutError(MBusReadError):
    """No complete frame arrived before the idle timeout elapsed."""


class MBusIncompleteFrameError(MBusReadError):
    """Peer closed the connection before the frame was complete."""
