import enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Sequence, Tuple, Union

from web3 import Web3


def to_hash(value):
    """Normalises a tx/bundle hash (bytes or hex string) to lower-case 0x-prefixed hex."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    value = value.lower()
    return value if value.startswith('0x') else '0x' + value


def tx_hash_of(raw_tx):
    """Hash of a signed, serialized transaction."""
    if isinstance(raw_tx, (bytes, bytearray)):
        return Web3.to_hex(Web3.keccak(raw_tx))
    return Web3.to_hex(Web3.keccak(hexstr=raw_tx))


def _hex_data(value):
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value if value.startswith('0x') else '0x' + value


# Submissions and their outcomes

class SubmissionKind(enum.Enum):
    TRANSACTION = 'transaction'
    BUNDLE = 'bundle'


@dataclass(frozen=True)
class InclusionWindow:
    min_block: int
    max_block: Optional[int] = None


@dataclass(frozen=True)
class SubmissionHandle:
    kind: SubmissionKind
    identifiers: Tuple[str, ...]
    window: InclusionWindow
    revertible: FrozenSet[str] = frozenset()
    relay_hash: Optional[str] = None

    def __post_init__(self):
        identifiers = tuple(dict.fromkeys(to_hash(h) for h in self.identifiers))
        if not identifiers:
            raise ValueError('a submission needs at least one identifier')
        if self.kind is SubmissionKind.TRANSACTION and len(identifiers) != 1:
            raise ValueError('a transaction submission has exactly one identifier')
        object.__setattr__(self, 'identifiers', identifiers)
        object.__setattr__(self, 'revertible', frozenset(to_hash(h) for h in self.revertible))

    def __str__(self):
        return f'{self.kind.value} {self.relay_hash or self.identifiers[0]}'

    @classmethod
    def for_transaction(cls, tx_hash, window):
        return cls(SubmissionKind.TRANSACTION, (tx_hash,), window, relay_hash=to_hash(tx_hash))

    @classmethod
    def for_bundle(cls, bundle_hash, params):
        """Handle for a bundle accepted by the relay. With no max_block the bundle only targets `block`."""
        max_block = params.max_block if params.max_block is not None else params.block
        return cls(
            SubmissionKind.BUNDLE,
            tuple(params.hashes()),
            InclusionWindow(params.block, max_block),
            revertible=frozenset(params.revertible_hashes()),
            relay_hash=to_hash(bundle_hash) if bundle_hash else None,
        )


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    success: bool
    block_number: int
    gas_used: Optional[int] = None


class Outcome:
    """Terminal classification of a submission."""


@dataclass(frozen=True)
class Included(Outcome):
    receipts: Mapping[str, Receipt]
    block_number: int


@dataclass(frozen=True)
class Reverted(Outcome):
    receipts: Mapping[str, Receipt]
    failed: Tuple[str, ...]


@dataclass(frozen=True)
class PartiallyLanded(Outcome):
    landed: Tuple[str, ...]
    missing: Tuple[str, ...]
    receipts: Mapping[str, Receipt] = field(default_factory=dict)


@dataclass(frozen=True)
class TimedOut(Outcome):
    last_block: int


# Request parameters

class HintPreference(enum.Enum):
    HASH = 'hash'
    CALLDATA = 'calldata'
    CONTRACT_ADDRESS = 'contract_address'
    FUNCTION_SELECTOR = 'function_selector'
    LOGS = 'logs'
    TX_HASH = 'tx_hash'
    DEFAULT_LOGS = 'default_logs'


@dataclass(frozen=True)
class PrivacyPreferences:
    hints: Optional[FrozenSet[HintPreference]] = None
    builders: Optional[Tuple[str, ...]] = None

    def to_json(self):
        privacy = {}
        if self.hints is not None:
            privacy['hints'] = sorted(HintPreference(hint).value for hint in self.hints)
        if self.builders is not None:
            privacy['builders'] = list(self.builders)
        return privacy


@dataclass(frozen=True)
class SendTransactionParams:
    tx: Union[str, bytes]
    max_block_number: Optional[int] = None
    privacy: Optional[PrivacyPreferences] = None
    fast: bool = True

    @property
    def tx_hash(self):
        return tx_hash_of(self.tx)

    def to_json(self):
        params = {'tx': _hex_data(self.tx)}
        if self.max_block_number is not None:
            params['maxBlockNumber'] = hex(self.max_block_number)
        if self.privacy is not None:
            params['preferences'] = {'fast': self.fast, 'privacy': self.privacy.to_json()}
        return params


@dataclass(frozen=True)
class SignedItem:
    tx: Union[str, bytes]
    can_revert: bool = False

    def to_json(self):
        return {'tx': _hex_data(self.tx), 'canRevert': self.can_revert}


@dataclass(frozen=True)
class HashItem:
    hash: str

    def to_json(self):
        return {'hash': to_hash(self.hash)}


@dataclass(frozen=True)
class BundleItem:
    params: 'SendBundleParams'

    def to_json(self):
        return {'bundle': self.params.to_json()}


@dataclass(frozen=True)
class Refund:
    body_idx: int
    percent: int


@dataclass(frozen=True)
class RefundConfig:
    address: str
    percent: int


@dataclass(frozen=True)
class SendBundleParams:
    body: Sequence[Union[SignedItem, HashItem, BundleItem]]
    block: int
    max_block: Optional[int] = None
    privacy: Optional[PrivacyPreferences] = None
    refunds: Sequence[Refund] = ()
    refund_config: Sequence[RefundConfig] = ()
    version: str = 'v0.1'

    def hashes(self):
        """Transaction hashes of the body, nested bundles flattened in order."""
        for item in self.body:
            if isinstance(item, SignedItem):
                yield tx_hash_of(item.tx)
            elif isinstance(item, HashItem):
                yield to_hash(item.hash)
            else:
                yield from item.params.hashes()

    def revertible_hashes(self):
        for item in self.body:
            if isinstance(item, SignedItem) and item.can_revert:
                yield tx_hash_of(item.tx)
            elif isinstance(item, BundleItem):
                yield from item.params.revertible_hashes()

    def to_json(self):
        inclusion = {'block': hex(self.block)}
        if self.max_block is not None:
            inclusion['maxBlock'] = hex(self.max_block)
        params = {
            'version': self.version,
            'inclusion': inclusion,
            'body': [item.to_json() for item in self.body],
        }
        if self.refunds or self.refund_config:
            params['validity'] = {
                'refund': [{'bodyIdx': r.body_idx, 'percent': r.percent} for r in self.refunds],
                'refundConfig': [{'address': r.address, 'percent': r.percent} for r in self.refund_config],
            }
        if self.privacy is not None:
            params['privacy'] = self.privacy.to_json()
        return params


# Hints

class EventType(enum.Enum):
    TRANSACTION = 'transaction'
    BUNDLE = 'bundle'


class EventTypeFilter(enum.Enum):
    ALL = 'all'
    TRANSACTION = 'transaction'
    BUNDLE = 'bundle'

    def matches(self, hint):
        return self is EventTypeFilter.ALL or self.value == hint.event_type.value


@dataclass(frozen=True)
class HintTransaction:
    to: Optional[str] = None
    function_selector: Optional[str] = None
    call_data: Optional[str] = None


@dataclass(frozen=True)
class Hint:
    hash: str
    event_type: EventType
    logs: Optional[Tuple[dict, ...]] = None
    txs: Optional[Tuple[HintTransaction, ...]] = None
    mev_gas_price: Optional[int] = None
    gas_used: Optional[int] = None
    sequence: int = 0

    @property
    def disclosed_fields(self) -> Dict[str, object]:
        fields = {'hash': self.hash}
        if self.logs is not None:
            fields['logs'] = self.logs
        if self.txs is not None:
            fields['txs'] = self.txs
            for name, attr in (('contract_address', 'to'),
                               ('function_selector', 'function_selector'),
                               ('calldata', 'call_data')):
                values = [getattr(tx, attr) for tx in self.txs if getattr(tx, attr) is not None]
                if values:
                    fields[name] = values[0] if len(self.txs) == 1 else values
        if self.mev_gas_price is not None:
            fields['mev_gas_price'] = self.mev_gas_price
        if self.gas_used is not None:
            fields['gas_used'] = self.gas_used
        return fields

    @property
    def transaction(self) -> Optional[HintTransaction]:
        """The single disclosed transaction of a transaction event, if any was disclosed."""
        if self.event_type is EventType.TRANSACTION and self.txs:
            return self.txs[0]
        return None


# Event history

@dataclass(frozen=True)
class EventHistoryInfo:
    min_block: int
    max_block: int
    min_timestamp: int
    max_timestamp: int
    count: int
    max_limit: int


@dataclass(frozen=True)
class EventHistoryParams:
    block_start: Optional[int] = None
    block_end: Optional[int] = None
    timestamp_start: Optional[int] = None
    timestamp_end: Optional[int] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def to_query(self):
        names = {
            'block_start': 'blockStart',
            'block_end': 'blockEnd',
            'timestamp_start': 'timestampStart',
            'timestamp_end': 'timestampEnd',
            'limit': 'limit',
            'offset': 'offset',
        }
        return {names[key]: value for key, value in vars(self).items() if value is not None}


@dataclass(frozen=True)
class EventHistory:
    block: int
    timestamp: int
    hint: Hint
