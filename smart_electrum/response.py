"""
Typed Electrum responses and the classifier that correlates them with requests.

A raw line is tried, in this order, as: an error object, a batched header
push, a script hash push, and finally as the typed response of the request
whose id it carries. The first two kinds of push carry no id, so they must be
recognised before the id lookup.
"""
import json
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import (
    BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt,
    StrictStr, ValidationError, field_validator
)

from .exceptions import (
    RawResponseParsingError, ResponseShapeMismatchError, UnknownRequestIdError
)
from .logging_config import logger
from .method import Method
from .request import Request

PendingIndex = Dict[int, Request]

# Fee rates are floats; servers answer -1 (an int) when they have no estimate
FeeValue = Union[StrictInt, StrictFloat]
Port = Union[StrictInt, StrictStr]
VersionKind = Union[StrictStr, Tuple[StrictStr, StrictStr]]

class ErrorResult(BaseModel):
    code: StrictInt
    message: StrictStr

class ErrorResponse(BaseModel):
    id: Optional[StrictInt] = None
    error: ErrorResult

class Header(BaseModel):
    height: StrictInt
    hex: StrictStr

class SingleHeaderNotification(BaseModel):
    """Reply to blockchain.headers.subscribe, carries the current tip"""
    id: StrictInt
    result: Header

    @property
    def header(self) -> Header:
        return self.result

class BatchHeaderNotification(BaseModel):
    """Server push of one or more new tips"""
    method: Method
    params: List[Header]

    @field_validator('method')
    @classmethod
    def validate_method(cls, v: Method) -> Method:
        if v is not Method.HEADERS_SUBSCRIBE:
            raise ValueError(f"Not a header notification: {v}")
        return v

    @field_validator('params', mode='before')
    @classmethod
    def single_header(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return [v]
        return v

    @property
    def headers(self) -> List[Header]:
        return self.params

HeaderNotification = Union[SingleHeaderNotification, BatchHeaderNotification]

class ScriptHashNotification(BaseModel):
    """Server push sent when the status of a subscribed script hash changes"""
    method: Method
    params: Tuple[StrictStr, Optional[StrictStr]]

    @field_validator('method')
    @classmethod
    def validate_method(cls, v: Method) -> Method:
        if v is not Method.SCRIPTHASH_SUBSCRIBE:
            raise ValueError(f"Not a script hash notification: {v}")
        return v

    @property
    def scripthash(self) -> str:
        return self.params[0]

    @property
    def status(self) -> Optional[str]:
        return self.params[1]

class RawResponse(BaseModel):
    """Minimal envelope used to find the pending request"""
    id: StrictInt = Field(ge=0)

class BaseResponse(BaseModel):
    id: StrictInt

class PingResponse(BaseResponse):
    # Servers answer null
    result: Optional[StrictStr] = None

class BannerResponse(BaseResponse):
    result: StrictStr

class DonationResponse(BaseResponse):
    result: Optional[StrictStr] = None

    @property
    def address(self) -> Optional[str]:
        return self.result

class Host(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tcp_port: Optional[Port] = None
    ssl_port: Optional[Port] = None

class Features(BaseModel):
    genesis_hash: StrictStr
    # Either the ports of this server, or a map of hostname to ports
    hosts: Union[Host, Dict[str, Host]] = Field(union_mode="left_to_right")
    protocol_max: StrictStr
    protocol_min: StrictStr
    pruning: Optional[StrictInt] = None
    server_version: StrictStr
    hash_function: StrictStr
    services: Optional[List[StrictStr]] = None

class FeaturesResponse(BaseResponse):
    result: Features

    @property
    def features(self) -> Features:
        return self.result

Peer = Tuple[StrictStr, StrictStr, List[StrictStr]]

class ListPeersResponse(BaseResponse):
    """Each peer is (ip address, hostname, feature strings such as "v1.4" or "s50002")"""
    result: List[Peer]

    @property
    def peers(self) -> List[Peer]:
        return self.result

class HeaderResponse(BaseResponse):
    result: StrictStr

    @property
    def raw_header(self) -> str:
        return self.result

class Headers(BaseModel):
    count: StrictInt
    hex: StrictStr
    max: StrictInt

class HeadersResponse(BaseResponse):
    result: Headers

    @property
    def headers(self) -> Headers:
        return self.result

class EstimateFeeResponse(BaseResponse):
    result: FeeValue

    @property
    def fee(self) -> Union[int, float]:
        return self.result

    @property
    def is_sentinel(self) -> bool:
        """True when the server returned an integer sentinel instead of a rate"""
        return isinstance(self.result, int)

class RelayFeeResponse(EstimateFeeResponse):
    pass

class FeeHistogramResponse(BaseResponse):
    result: List[Tuple[FeeValue, StrictInt]]

    @property
    def histogram(self) -> List[Tuple[Union[int, float], int]]:
        return self.result

class Balance(BaseModel):
    confirmed: StrictInt
    unconfirmed: StrictInt

class BalanceResponse(BaseResponse):
    result: Balance

    @property
    def balance(self) -> Balance:
        return self.result

class HistoryItem(BaseModel):
    # 0 or -1 for mempool transactions
    height: StrictInt
    tx_hash: StrictStr
    fee: Optional[StrictInt] = None

class HistoryResponse(BaseResponse):
    result: List[HistoryItem]

    @property
    def history(self) -> List[HistoryItem]:
        return self.result

class Utxo(BaseModel):
    height: StrictInt
    tx_hash: StrictStr
    tx_pos: StrictInt
    value: StrictInt

class ListUnspentResponse(BaseResponse):
    result: List[Utxo]

    @property
    def unspent(self) -> List[Utxo]:
        return self.result

class SubscribeResponse(BaseResponse):
    # Script hash status, null when the script hash has no history
    result: Optional[StrictStr] = None

class UnsubscribeResponse(BaseResponse):
    result: StrictBool

class VerboseTx(BaseModel):
    model_config = ConfigDict(extra="allow")

    txid: StrictStr
    hex: StrictStr
    size: StrictInt
    version: StrictInt
    locktime: StrictInt
    vin: List[Any]
    vout: List[Any]
    # Absent while the transaction is unconfirmed
    blockhash: Optional[StrictStr] = None
    blocktime: Optional[StrictInt] = None
    confirmations: Optional[StrictInt] = None
    time: Optional[StrictInt] = None

class TxGetResponse(BaseResponse):
    result: Union[StrictStr, VerboseTx] = Field(union_mode="left_to_right")

    @property
    def is_verbose(self) -> bool:
        return isinstance(self.result, VerboseTx)

class BroadcastResponse(BaseResponse):
    result: StrictStr

    @property
    def txid(self) -> str:
        return self.result

class MerkleProof(BaseModel):
    merkle: List[StrictStr]
    block_height: StrictInt
    pos: StrictInt

class MerkleResponse(BaseResponse):
    result: MerkleProof

class TxWithMerkle(BaseModel):
    tx_hash: StrictStr
    merkle: List[StrictStr]

class TxFromPositionResponse(BaseResponse):
    result: Union[StrictStr, TxWithMerkle] = Field(union_mode="left_to_right")

    @property
    def txid(self) -> str:
        if isinstance(self.result, TxWithMerkle):
            return self.result.tx_hash
        return self.result

class VersionResponse(BaseResponse):
    """(server software version, negotiated protocol version or range)"""
    result: Tuple[StrictStr, VersionKind]

    @property
    def server_software(self) -> str:
        return self.result[0]

    @property
    def protocol_version(self) -> Union[str, Tuple[str, str]]:
        return self.result[1]

Response = Union[
    ErrorResponse,
    SingleHeaderNotification,
    BatchHeaderNotification,
    ScriptHashNotification,
    PingResponse,
    BannerResponse,
    DonationResponse,
    FeaturesResponse,
    ListPeersResponse,
    HeaderResponse,
    HeadersResponse,
    EstimateFeeResponse,
    RelayFeeResponse,
    FeeHistogramResponse,
    BalanceResponse,
    HistoryResponse,
    ListUnspentResponse,
    SubscribeResponse,
    UnsubscribeResponse,
    TxGetResponse,
    BroadcastResponse,
    MerkleResponse,
    TxFromPositionResponse,
    VersionResponse,
]

RESPONSE_TYPES: Dict[Method, Type[BaseModel]] = {
    Method.PING: PingResponse,
    Method.BANNER: BannerResponse,
    Method.DONATION: DonationResponse,
    Method.FEATURES: FeaturesResponse,
    Method.LIST_PEERS: ListPeersResponse,
    Method.HEADERS_SUBSCRIBE: SingleHeaderNotification,
    Method.BLOCK_HEADER: HeaderResponse,
    Method.BLOCK_HEADERS: HeadersResponse,
    Method.ESTIMATE_FEE: EstimateFeeResponse,
    Method.RELAY_FEE: RelayFeeResponse,
    Method.FEE_HISTOGRAM: FeeHistogramResponse,
    Method.SCRIPTHASH_GET_BALANCE: BalanceResponse,
    Method.SCRIPTHASH_GET_HISTORY: HistoryResponse,
    Method.SCRIPTHASH_LIST_UNSPENT: ListUnspentResponse,
    Method.SCRIPTHASH_SUBSCRIBE: SubscribeResponse,
    Method.SCRIPTHASH_UNSUBSCRIBE: UnsubscribeResponse,
    Method.TRANSACTION_GET: TxGetResponse,
    Method.TRANSACTION_BROADCAST: BroadcastResponse,
    Method.TRANSACTION_GET_MERKLE: MerkleResponse,
    Method.TRANSACTION_FROM_POSITION: TxFromPositionResponse,
    Method.VERSION: VersionResponse,
}

# Shapes recognised before the id lookup, in priority order
_UNINDEXED_SHAPES: Tuple[Type[BaseModel], ...] = (
    ErrorResponse,
    BatchHeaderNotification,
    ScriptHashNotification,
)

def _try_shape(model: Type[BaseModel], value: Any) -> Optional[BaseModel]:
    try:
        return model.model_validate(value)
    except ValidationError:
        return None

def classify_value(value: Any, raw: str, index: PendingIndex) -> Response:
    """Classify an already decoded JSON value; ``raw`` is only used for error reports"""
    for shape in _UNINDEXED_SHAPES:
        parsed = _try_shape(shape, value)
        if parsed is not None:
            return parsed

    envelope = _try_shape(RawResponse, value)
    if envelope is None:
        raise RawResponseParsingError(raw, "missing or invalid `id`")

    request = index.get(envelope.id)
    if request is None:
        raise UnknownRequestIdError(envelope.id)

    response_type = RESPONSE_TYPES[request.method]
    try:
        return response_type.model_validate(value)
    except ValidationError as e:
        logger.debug(f"Response {envelope.id} does not match {request.method}: {str(e)}")
        raise ResponseShapeMismatchError(request.method.value, raw, str(e))

def classify(raw: str, index: PendingIndex) -> Response:
    """Turn one raw response line into a typed response"""
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise RawResponseParsingError(str(raw), str(e))
    return classify_value(value, raw, index)
