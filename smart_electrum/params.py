"""
Positional parameters of every Electrum method.

Each params class holds the fixed argument tuple of one (or one family of)
method(s) and encodes as a JSON array. ``parse_params`` is the inverse and is
used when decoding a request line.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .exceptions import InvalidParamsError
from .method import Method

VersionKind = Union[str, Tuple[str, str]]

@dataclass(frozen=True)
class NoParams:
    def as_list(self) -> List[Any]:
        # Always an empty array, never null
        return []

@dataclass(frozen=True)
class BlockHeaderParams:
    height: int

    def as_list(self) -> List[Any]:
        return [self.height]

@dataclass(frozen=True)
class BlockHeadersParams:
    start: int
    count: int

    def as_list(self) -> List[Any]:
        return [self.start, self.count]

@dataclass(frozen=True)
class TransactionBroadcastParams:
    raw_tx: str

    def as_list(self) -> List[Any]:
        return [self.raw_tx]

@dataclass(frozen=True)
class EstimateFeeParams:
    block_target: int

    def as_list(self) -> List[Any]:
        return [self.block_target]

@dataclass(frozen=True)
class ScriptHashParams:
    """Shared by get_balance, get_history, listunspent, subscribe and unsubscribe"""
    scripthash: str

    def as_list(self) -> List[Any]:
        return [self.scripthash]

@dataclass(frozen=True)
class TransactionGetParams:
    txid: str
    # None encodes the short form [txid]
    verbose: Optional[bool] = None

    def as_list(self) -> List[Any]:
        if self.verbose is None:
            return [self.txid]
        return [self.txid, self.verbose]

@dataclass(frozen=True)
class TransactionGetMerkleParams:
    txid: str
    height: int

    def as_list(self) -> List[Any]:
        return [self.txid, self.height]

@dataclass(frozen=True)
class TransactionFromPositionParams:
    height: int
    tx_pos: int
    merkle: bool

    def as_list(self) -> List[Any]:
        return [self.height, self.tx_pos, self.merkle]

@dataclass(frozen=True)
class VersionParams:
    client_name: str
    # A single protocol version, or a (min, max) range
    version: VersionKind

    def as_list(self) -> List[Any]:
        if isinstance(self.version, str):
            return [self.client_name, self.version]
        return [self.client_name, list(self.version)]

Params = Union[
    NoParams,
    BlockHeaderParams,
    BlockHeadersParams,
    TransactionBroadcastParams,
    EstimateFeeParams,
    ScriptHashParams,
    TransactionGetParams,
    TransactionGetMerkleParams,
    TransactionFromPositionParams,
    VersionParams,
]

def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)

def _is_uint(value: Any) -> bool:
    return _is_int(value) and value >= 0

def _is_str(value: Any) -> bool:
    return isinstance(value, str)

def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)

def _check(method: Method, values: Any, *checks: Callable[[Any], bool]) -> List[Any]:
    if not isinstance(values, list):
        raise InvalidParamsError(f"Params of {method} must be an array", {"params": values})
    if len(values) != len(checks):
        raise InvalidParamsError(
            f"{method} takes {len(checks)} params, got {len(values)}",
            {"params": values}
        )
    for position, (value, check) in enumerate(zip(values, checks)):
        if not check(value):
            raise InvalidParamsError(
                f"Invalid param {position} for {method}: {value!r}",
                {"params": values}
            )
    return values

def _parse_none(method: Method, values: Any) -> Params:
    _check(method, values)
    return NoParams()

def _parse_scripthash(method: Method, values: Any) -> Params:
    return ScriptHashParams(*_check(method, values, _is_str))

def _parse_tx_get(method: Method, values: Any) -> Params:
    if isinstance(values, list) and len(values) == 1:
        return TransactionGetParams(*_check(method, values, _is_str))
    return TransactionGetParams(*_check(method, values, _is_str, _is_bool))

def _is_version_kind(value: Any) -> bool:
    if _is_str(value):
        return True
    return isinstance(value, list) and len(value) == 2 and all(_is_str(v) for v in value)

def _parse_version(method: Method, values: Any) -> Params:
    client_name, version = _check(method, values, _is_str, _is_version_kind)
    if isinstance(version, list):
        version = (version[0], version[1])
    return VersionParams(client_name, version)

_PARSERS: Dict[Method, Callable[[Method, Any], Params]] = {
    Method.PING: _parse_none,
    Method.BANNER: _parse_none,
    Method.DONATION: _parse_none,
    Method.FEATURES: _parse_none,
    Method.LIST_PEERS: _parse_none,
    Method.HEADERS_SUBSCRIBE: _parse_none,
    Method.RELAY_FEE: _parse_none,
    Method.FEE_HISTOGRAM: _parse_none,
    Method.BLOCK_HEADER: lambda m, v: BlockHeaderParams(*_check(m, v, _is_uint)),
    Method.BLOCK_HEADERS: lambda m, v: BlockHeadersParams(*_check(m, v, _is_uint, _is_uint)),
    Method.ESTIMATE_FEE: lambda m, v: EstimateFeeParams(*_check(m, v, _is_uint)),
    Method.TRANSACTION_BROADCAST: lambda m, v: TransactionBroadcastParams(*_check(m, v, _is_str)),
    Method.SCRIPTHASH_GET_BALANCE: _parse_scripthash,
    Method.SCRIPTHASH_GET_HISTORY: _parse_scripthash,
    Method.SCRIPTHASH_LIST_UNSPENT: _parse_scripthash,
    Method.SCRIPTHASH_SUBSCRIBE: _parse_scripthash,
    Method.SCRIPTHASH_UNSUBSCRIBE: _parse_scripthash,
    Method.TRANSACTION_GET: _parse_tx_get,
    Method.TRANSACTION_GET_MERKLE: lambda m, v: TransactionGetMerkleParams(*_check(m, v, _is_str, _is_uint)),
    Method.TRANSACTION_FROM_POSITION: lambda m, v: TransactionFromPositionParams(
        *_check(m, v, _is_uint, _is_uint, _is_bool)
    ),
    Method.VERSION: _parse_version,
}

def parse_params(method: Method, values: Any) -> Params:
    """Decode a positional JSON array into the params of ``method``"""
    if values is None:
        values = []
    return _PARSERS[method](method, values)
