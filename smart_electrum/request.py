import json
import hashlib
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict

from .exceptions import InvalidParamsError, ProtocolError
from .method import Method
from .params import (
    Params, NoParams, BlockHeaderParams, BlockHeadersParams,
    TransactionBroadcastParams, EstimateFeeParams, ScriptHashParams,
    TransactionGetParams, TransactionGetMerkleParams,
    TransactionFromPositionParams, VersionParams, parse_params
)

JSONRPC_VERSION = "2.0"

def scripthash_from_script(script: bytes) -> str:
    """Electrum script hash: sha256 of the output script, byte-reversed, hex encoded"""
    return hashlib.sha256(script).digest()[::-1].hex()

@dataclass(frozen=True)
class Request:
    """A single JSON-RPC request"""
    method: Method
    params: Params = field(default_factory=NoParams)
    id: int = 0
    jsonrpc: str = JSONRPC_VERSION

    def with_id(self, request_id: int) -> "Request":
        """Return a copy of the request carrying ``request_id``"""
        if request_id < 0:
            raise ValueError(f"Request id must be unsigned: {request_id}")
        return dataclasses.replace(self, id=request_id)

    def to_dict(self) -> Dict[str, Any]:
        # Field order is part of the wire format
        return {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "method": self.method.value,
            "params": self.params.as_list(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def __str__(self) -> str:
        return self.to_json()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Request":
        """Decode a request object"""
        if not isinstance(data, dict):
            raise ProtocolError("Request must be a JSON object", {"request": data})
        try:
            method = Method(data["method"])
        except (KeyError, ValueError):
            raise InvalidParamsError(f"Unknown method: {data.get('method')!r}", {"request": data})
        request_id = data.get("id", 0)
        if not isinstance(request_id, int) or isinstance(request_id, bool) or request_id < 0:
            raise ProtocolError(f"Invalid request id: {request_id!r}", {"request": data})
        return cls(
            method=method,
            params=parse_params(method, data.get("params")),
            id=request_id,
            jsonrpc=data.get("jsonrpc", JSONRPC_VERSION),
        )

    @classmethod
    def from_json(cls, raw: str) -> "Request":
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON request: {str(e)}", {"raw": raw})
        return cls.from_dict(data)

    # Server methods

    @classmethod
    def ping(cls) -> "Request":
        return cls(Method.PING)

    @classmethod
    def version(cls, client_name: str, version: str) -> "Request":
        return cls(Method.VERSION, VersionParams(client_name, version))

    @classmethod
    def version_range(cls, client_name: str, min_version: str, max_version: str) -> "Request":
        return cls(Method.VERSION, VersionParams(client_name, (min_version, max_version)))

    @classmethod
    def banner(cls) -> "Request":
        return cls(Method.BANNER)

    @classmethod
    def donation(cls) -> "Request":
        return cls(Method.DONATION)

    @classmethod
    def features(cls) -> "Request":
        return cls(Method.FEATURES)

    @classmethod
    def subscribe_peers(cls) -> "Request":
        return cls(Method.LIST_PEERS)

    # Blockchain methods

    @classmethod
    def header(cls, height: int) -> "Request":
        return cls(Method.BLOCK_HEADER, BlockHeaderParams(height))

    @classmethod
    def headers(cls, start: int, count: int) -> "Request":
        return cls(Method.BLOCK_HEADERS, BlockHeadersParams(start, count))

    @classmethod
    def estimate_fee(cls, block_target: int) -> "Request":
        return cls(Method.ESTIMATE_FEE, EstimateFeeParams(block_target))

    @classmethod
    def subscribe_headers(cls) -> "Request":
        return cls(Method.HEADERS_SUBSCRIBE)

    @classmethod
    def relay_fee(cls) -> "Request":
        return cls(Method.RELAY_FEE)

    @classmethod
    def get_fee_histogram(cls) -> "Request":
        return cls(Method.FEE_HISTOGRAM)

    # Script hash methods, ``scripthash`` is the hex string from scripthash_from_script()

    @classmethod
    def sh_get_balance(cls, scripthash: str) -> "Request":
        return cls(Method.SCRIPTHASH_GET_BALANCE, ScriptHashParams(scripthash))

    @classmethod
    def sh_get_history(cls, scripthash: str) -> "Request":
        return cls(Method.SCRIPTHASH_GET_HISTORY, ScriptHashParams(scripthash))

    @classmethod
    def sh_list_unspent(cls, scripthash: str) -> "Request":
        return cls(Method.SCRIPTHASH_LIST_UNSPENT, ScriptHashParams(scripthash))

    @classmethod
    def subscribe_sh(cls, scripthash: str) -> "Request":
        return cls(Method.SCRIPTHASH_SUBSCRIBE, ScriptHashParams(scripthash))

    @classmethod
    def unsubscribe_sh(cls, scripthash: str) -> "Request":
        return cls(Method.SCRIPTHASH_UNSUBSCRIBE, ScriptHashParams(scripthash))

    # Transaction methods

    @classmethod
    def tx_broadcast(cls, raw_tx: str) -> "Request":
        return cls(Method.TRANSACTION_BROADCAST, TransactionBroadcastParams(raw_tx))

    @classmethod
    def tx_get(cls, txid: str) -> "Request":
        return cls(Method.TRANSACTION_GET, TransactionGetParams(txid))

    @classmethod
    def tx_get_verbose(cls, txid: str) -> "Request":
        return cls(Method.TRANSACTION_GET, TransactionGetParams(txid, True))

    @classmethod
    def tx_get_merkle(cls, txid: str, height: int) -> "Request":
        return cls(Method.TRANSACTION_GET_MERKLE, TransactionGetMerkleParams(txid, height))

    @classmethod
    def tx_from_pos(cls, height: int, tx_pos: int, merkle: bool) -> "Request":
        return cls(Method.TRANSACTION_FROM_POSITION, TransactionFromPositionParams(height, tx_pos, merkle))
