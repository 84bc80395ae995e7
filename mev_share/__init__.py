from mev_share.backoff import Backoff
from mev_share.chain import BlockCache, ChainReader, Web3ChainReader
from mev_share.client import MevShareClient
from mev_share.config import GOERLI, MAINNET, SEPOLIA, Network, Settings, get_network
from mev_share.errors import (
    ChainReadError,
    ChainUnavailable,
    ConfigError,
    HintDecodeError,
    MevShareError,
    RelayError,
    ResolutionCancelled,
    ResolutionError,
    ResolutionStalled,
    StreamClosed,
    StreamError,
    StreamUnrecoverable,
)
from mev_share.stream import ConnectionState, HintEventStream, Received
from mev_share.tracker import InclusionTracker
from mev_share.types import (
    BundleItem,
    EventHistoryParams,
    EventType,
    EventTypeFilter,
    HashItem,
    Hint,
    HintPreference,
    Included,
    InclusionWindow,
    Outcome,
    PartiallyLanded,
    PrivacyPreferences,
    Receipt,
    Refund,
    RefundConfig,
    Reverted,
    SendBundleParams,
    SendTransactionParams,
    SignedItem,
    SubmissionHandle,
    SubmissionKind,
    TimedOut,
)

__version__ = '0.1.0'
