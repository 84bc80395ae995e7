"""
Read-only chain access used by the inclusion tracker.

`ChainReader` is the capability the tracker needs: current head, the ordered
transaction hashes of a block, and receipts. `Web3ChainReader` implements it
over a web3 provider. `BlockCache` sits in front of `block_transactions` and
is meant to be shared by every tracker polling the same chain.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from mev_share.errors import ChainReadError
from mev_share.types import Receipt, to_hash

logger = logging.getLogger(__name__)


class ChainReader:
    def current_block(self):
        raise NotImplementedError

    def block_transactions(self, number):
        """Ordered tx hashes of block `number`, as lower-case hex strings."""
        raise NotImplementedError

    def transaction_receipt(self, tx_hash):
        """The receipt of `tx_hash`, or None if it has not been mined."""
        raise NotImplementedError


class Web3ChainReader(ChainReader):
    def __init__(self, w3):
        self.w3 = w3

    @classmethod
    def from_url(cls, url, timeout=10.0):
        return cls(Web3(Web3.HTTPProvider(url, request_kwargs={'timeout': timeout})))

    def current_block(self):
        try:
            return self.w3.eth.block_number
        except (requests.RequestException, Web3Exception, OSError) as exc:
            raise ChainReadError(f'block_number failed: {exc}') from exc

    def block_transactions(self, number):
        try:
            block = self.w3.eth.get_block(number)
        except (requests.RequestException, Web3Exception, OSError) as exc:
            raise ChainReadError(f'get_block({number}) failed: {exc}') from exc
        return tuple(to_hash(tx) for tx in block['transactions'])

    def transaction_receipt(self, tx_hash):
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (requests.RequestException, Web3Exception, OSError) as exc:
            raise ChainReadError(f'get_transaction_receipt({tx_hash}) failed: {exc}') from exc
        return Receipt(
            tx_hash=to_hash(receipt['transactionHash']),
            success=receipt['status'] == 1,
            block_number=receipt['blockNumber'],
            gas_used=receipt.get('gasUsed'),
        )


class BlockCache:
    """
    Thread-safe read-through cache of block number -> tx hashes.

    Concurrent misses on the same block share one load. Failed loads are not
    cached; every waiter sees the exception and retries on its own schedule.
    """

    def __init__(self, reader, max_blocks=256):
        self.reader = reader
        self.max_blocks = max_blocks
        self.loads = 0
        self._blocks = OrderedDict()
        self._pending = {}
        self._lock = threading.Lock()

    def block_transactions(self, number):
        with self._lock:
            if number in self._blocks:
                self._blocks.move_to_end(number)
                return self._blocks[number]
            future = self._pending.get(number)
            owner = future is None
            if owner:
                future = self._pending[number] = Future()

        if not owner:
            return future.result()

        try:
            txs = self.reader.block_transactions(number)
        except BaseException as exc:
            with self._lock:
                del self._pending[number]
            future.set_exception(exc)
            raise

        with self._lock:
            self.loads += 1
            self._blocks[number] = txs
            while len(self._blocks) > self.max_blocks:
                self._blocks.popitem(last=False)
            del self._pending[number]
        future.set_result(txs)
        logger.debug('Cached block %s (%s txs)', number, len(txs))
        return txs

    def __len__(self):
        with self._lock:
            return len(self._blocks)
