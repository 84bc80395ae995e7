import logging

from mev_share.backoff import Backoff
from mev_share.chain import BlockCache, Web3ChainReader
from mev_share.config import get_network
from mev_share.history import EventHistoryClient
from mev_share.relay import RelayClient
from mev_share.sse import SSETransport
from mev_share.stream import DEFAULT_BUFFER_SIZE, HintEventStream
from mev_share.tracker import DEFAULT_STALL_BLOCKS, InclusionTracker
from mev_share.types import EventTypeFilter, InclusionWindow, SubmissionHandle

logger = logging.getLogger(__name__)

# blocks the relay keeps retrying a private transaction for
TX_WAIT_MAX_BLOCKS = 25


class MevShareClient:
    """
    Submits orders to MEV-Share, resolves their inclusion and streams hints.

        client = MevShareClient(auth_privkey, Web3ChainReader.from_url(provider_url))
        handle = client.send_bundle(params)
        outcome = client.resolve(handle)
    """

    def __init__(self, auth_privkey, reader, network='mainnet', session=None, poll_interval=2.0,
                 stall_blocks=DEFAULT_STALL_BLOCKS, stream_buffer_size=DEFAULT_BUFFER_SIZE,
                 stream_backoff=None, stream_max_downtime=None):
        self.network = get_network(network) if isinstance(network, (str, int)) else network
        self.reader = reader
        self.relay = RelayClient(self.network.api_url, auth_privkey, session=session)
        self.history = EventHistoryClient(self.network.history_url, session=session)
        # one cache per client, shared by every resolve() it runs
        self.tracker = InclusionTracker(reader, cache=BlockCache(reader), poll_interval=poll_interval,
                                        stall_blocks=stall_blocks)
        self.stream_buffer_size = stream_buffer_size
        self.stream_backoff = stream_backoff if stream_backoff is not None else Backoff()
        self.stream_max_downtime = stream_max_downtime

    @classmethod
    def from_settings(cls, settings, session=None):
        settings.require('auth_privkey', 'provider_url')
        return cls(
            settings.auth_privkey,
            Web3ChainReader.from_url(settings.provider_url),
            network=settings.network,
            session=session,
            poll_interval=settings.poll_interval,
            stall_blocks=settings.stall_blocks,
            stream_buffer_size=settings.stream_buffer_size,
            stream_backoff=Backoff(max_retries=settings.stream_max_retries, max_delay=30.0),
            stream_max_downtime=settings.stream_max_downtime,
        )

    def send_private_transaction(self, params):
        """Without max_block_number the relay gives up on the tx after TX_WAIT_MAX_BLOCKS blocks."""
        head = self.tracker.current_block()
        max_block = params.max_block_number
        if max_block is None:
            max_block = head + TX_WAIT_MAX_BLOCKS
        tx_hash = self.relay.send_private_transaction(params)
        return SubmissionHandle.for_transaction(tx_hash, InclusionWindow(head + 1, max_block))

    def send_bundle(self, params):
        bundle_hash = self.relay.send_bundle(params)
        return SubmissionHandle.for_bundle(bundle_hash, params)

    def resolve(self, handle, cancel=None):
        return self.tracker.resolve(handle, cancel=cancel)

    def resolve_many(self, handles, max_workers=8):
        return self.tracker.resolve_many(handles, max_workers=max_workers)

    def subscribe(self, event_filter=EventTypeFilter.ALL):
        """A lazy stream of hints; iterate it or use it as a context manager so it gets closed."""
        transport = SSETransport(self.network.stream_url)
        return HintEventStream(
            transport,
            event_filter=event_filter,
            buffer_size=self.stream_buffer_size,
            backoff=self.stream_backoff,
            max_downtime=self.stream_max_downtime,
        )

    def get_event_history_info(self):
        return self.history.get_info()

    def get_event_history(self, params):
        return self.history.get_history(params)
