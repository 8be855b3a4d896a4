from enum import Enum

class Method(str, Enum):
    """Electrum protocol operations, valued by their wire name"""
    BANNER = "server.banner"
    BLOCK_HEADER = "blockchain.block.header"
    BLOCK_HEADERS = "blockchain.block.headers"
    TRANSACTION_BROADCAST = "blockchain.transaction.broadcast"
    DONATION = "server.donation_address"
    ESTIMATE_FEE = "blockchain.estimatefee"
    FEATURES = "server.features"
    HEADERS_SUBSCRIBE = "blockchain.headers.subscribe"
    FEE_HISTOGRAM = "mempool.get_fee_histogram"
    LIST_PEERS = "server.peers.subscribe"
    PING = "server.ping"
    RELAY_FEE = "blockchain.relayfee"
    SCRIPTHASH_GET_BALANCE = "blockchain.scripthash.get_balance"
    SCRIPTHASH_GET_HISTORY = "blockchain.scripthash.get_history"
    # NOTE: blockchain.scripthash.get_mempool is not supported by electrs
    SCRIPTHASH_LIST_UNSPENT = "blockchain.scripthash.listunspent"
    SCRIPTHASH_SUBSCRIBE = "blockchain.scripthash.subscribe"
    SCRIPTHASH_UNSUBSCRIBE = "blockchain.scripthash.unsubscribe"
    TRANSACTION_GET = "blockchain.transaction.get"
    TRANSACTION_GET_MERKLE = "blockchain.transaction.get_merkle"
    TRANSACTION_FROM_POSITION = "blockchain.transaction.id_from_pos"
    VERSION = "server.version"

    @property
    def wire_name(self) -> str:
        return self.value

    @classmethod
    def from_wire(cls, name: str) -> "Method":
        """Look up a method by its wire name"""
        return cls(name)

    def __str__(self) -> str:
        return self.value
