from .batch import RequestBatch, ResponseBatch, parse_str_response
from .client import Client, ConnectionKind
from .config import Settings, get_settings
from .exceptions import (
    ElectrumError, TransportError, ConfigurationError, NotConfiguredError,
    AlreadyConnectedError, NotConnectedError, ProtocolError, BatchParsingError,
    UnknownRequestIdError, ResponseShapeMismatchError, RawResponseParsingError,
    LockError
)
from .method import Method
from .request import Request, scripthash_from_script
from .response import PendingIndex, Response, classify

__version__ = "0.1.0"
