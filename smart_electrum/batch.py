from typing import Iterable, Iterator, List, Union
from pathlib import Path
import json

from .exceptions import BatchParsingError, DuplicateRequestIdError, ProtocolError
from .logging_config import logger
from .request import Request
from .response import PendingIndex, Response, classify

class RequestBatch:
    """Several requests sent as one JSON array line"""

    def __init__(self, requests: Iterable[Request] = ()):
        self.requests: List[Request] = list(requests)

    def add(self, request: Request) -> "RequestBatch":
        self.requests.append(request)
        return self

    def __len__(self) -> int:
        return len(self.requests)

    def __iter__(self) -> Iterator[Request]:
        return iter(self.requests)

    def to_json(self) -> str:
        return "[" + ",".join(request.to_json() for request in self.requests) + "]"

    def index(self) -> PendingIndex:
        """Build the pending index of this batch, rejecting reused ids"""
        index: PendingIndex = {}
        for request in self.requests:
            if request.id in index:
                raise DuplicateRequestIdError(request.id)
            index[request.id] = request
        return index

    @classmethod
    def from_json(cls, raw: str) -> "RequestBatch":
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BatchParsingError(f"Invalid JSON batch: {str(e)}", {"raw": raw})
        if not isinstance(data, list):
            raise BatchParsingError("Request batch must be a JSON array", {"raw": raw})
        return cls(Request.from_dict(item) for item in data)

    @classmethod
    def load_batch_file(cls, file_path: Union[str, Path]) -> "RequestBatch":
        """Load a request batch from a JSON file"""
        try:
            with open(file_path) as f:
                return cls.from_json(f.read())
        except OSError as e:
            raise ProtocolError(f"Error loading batch file: {str(e)}", {"path": str(file_path)})

class ResponseBatch:
    """Responses decoded from one JSON array line, in wire order"""

    def __init__(self, responses: Iterable[Response] = ()):
        self.responses: List[Response] = list(responses)

    def __len__(self) -> int:
        return len(self.responses)

    def __iter__(self) -> Iterator[Response]:
        return iter(self.responses)

    def __getitem__(self, position: int) -> Response:
        return self.responses[position]

    @classmethod
    def from_str(cls, raw: str, index: PendingIndex) -> "ResponseBatch":
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            raise BatchParsingError("Payload is not JSON", {"raw": raw})
        if not isinstance(parsed, list):
            raise BatchParsingError("Payload is not a JSON array", {"raw": raw})

        # Each element is classified on its own
        responses = []
        for item in parsed:
            responses.append(classify(json.dumps(item, separators=(",", ":")), index))
        return cls(responses)

def parse_str_response(raw: str, index: PendingIndex) -> List[Response]:
    """Decode a raw line that holds either a batch or a single response"""
    try:
        return ResponseBatch.from_str(raw, index).responses
    except BatchParsingError:
        logger.debug("Payload is not a batch, parsing a single response")
    return [classify(raw, index)]
