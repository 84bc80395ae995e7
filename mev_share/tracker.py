"""
Resolves a submitted transaction or bundle to its terminal outcome.

Receipts are checked once up front, so an order that already landed resolves
immediately; after that the tracker walks the chain block by block from the
head at the time `resolve` is called. The first block an identifier shows up
in is final; reorgs are not followed.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from mev_share.backoff import Backoff
from mev_share.chain import BlockCache
from mev_share.errors import (
    ChainReadError,
    ChainUnavailable,
    ResolutionCancelled,
    ResolutionError,
    ResolutionStalled,
)
from mev_share.types import Included, PartiallyLanded, Reverted, SubmissionKind, TimedOut

logger = logging.getLogger(__name__)

DEFAULT_STALL_BLOCKS = 256


class InclusionTracker:
    def __init__(self, reader, cache=None, poll_interval=2.0, backoff=None, stall_blocks=DEFAULT_STALL_BLOCKS):
        self.reader = reader
        self.cache = cache if cache is not None else BlockCache(reader)
        self.poll_interval = poll_interval
        self.backoff = backoff if backoff is not None else Backoff()
        self.stall_blocks = stall_blocks

    def resolve(self, handle, cancel=None):
        """
        Blocks until `handle` reaches a terminal outcome.

        Raises ChainUnavailable when chain reads keep failing, ResolutionStalled
        when a handle without max_block sees nothing for `stall_blocks` blocks,
        and ResolutionCancelled once `cancel` (a threading.Event) is set.
        """
        cancel = cancel if cancel is not None else threading.Event()
        max_block = handle.window.max_block

        head = self._read(self.reader.current_block, cancel=cancel)
        start = head if max_block is None else min(head, max_block)
        ceiling = max_block if max_block is not None else start + self.stall_blocks
        last_checked = start - 1
        logger.info('Tracking %s from block %s (max block %s)', handle, start, max_block)

        # anything that already landed before the scan starts
        seen = {}
        for tx_hash in handle.identifiers:
            receipt = self._read(self.reader.transaction_receipt, tx_hash, cancel=cancel)
            if receipt is not None and receipt.block_number <= last_checked:
                seen[tx_hash] = receipt
        if seen:
            outcome = self._evaluate(handle, seen, last_checked)
            if outcome is not None:
                logger.info('%s had already resolved: %s', handle, type(outcome).__name__)
                return outcome

        while True:
            for number in range(last_checked + 1, min(head, ceiling) + 1):
                self._scan_block(handle, number, seen, cancel)
                last_checked = number
                outcome = self._evaluate(handle, seen, number)
                if outcome is not None:
                    logger.info('%s resolved at block %s: %s', handle, number, type(outcome).__name__)
                    return outcome

            if max_block is None and last_checked >= ceiling:
                raise ResolutionStalled(handle, last_checked)

            if cancel.wait(self.poll_interval):
                raise ResolutionCancelled(f'{handle} cancelled at block {last_checked}')
            head = self._read(self.reader.current_block, cancel=cancel)

    def current_block(self, cancel=None):
        """Chain head, with the same retries as resolve(). Raises ChainUnavailable once they run out."""
        return self._read(self.reader.current_block, cancel=cancel if cancel is not None else threading.Event())

    def resolve_many(self, handles, max_workers=8):
        """Resolves handles concurrently; each result is an Outcome or the ResolutionError raised for it."""
        def run(handle):
            try:
                return self.resolve(handle)
            except ResolutionError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='inclusion') as pool:
            return list(pool.map(run, handles))

    def _scan_block(self, handle, number, seen, cancel):
        txs = self._read(self.cache.block_transactions, number, cancel=cancel)
        present = set(txs)
        for tx_hash in handle.identifiers:
            if tx_hash in seen or tx_hash not in present:
                continue
            seen[tx_hash] = self._read(self._receipt, tx_hash, cancel=cancel)
            logger.debug('%s: %s landed in block %s', handle, tx_hash, number)

    def _receipt(self, tx_hash):
        receipt = self.reader.transaction_receipt(tx_hash)
        if receipt is None:
            raise ChainReadError(f'{tx_hash} is in a block but has no receipt yet')
        return receipt

    def _evaluate(self, handle, seen, block):
        ordered = {tx_hash: seen[tx_hash] for tx_hash in handle.identifiers if tx_hash in seen}

        if len(ordered) == len(handle.identifiers):
            failed = tuple(
                tx_hash for tx_hash, receipt in ordered.items()
                if not receipt.success and (handle.kind is SubmissionKind.TRANSACTION
                                            or tx_hash not in handle.revertible)
            )
            if failed:
                return Reverted(receipts=ordered, failed=failed)
            return Included(receipts=ordered, block_number=max(r.block_number for r in ordered.values()))

        max_block = handle.window.max_block
        if max_block is not None and block >= max_block:
            if not ordered:
                return TimedOut(last_block=block)
            missing = tuple(tx_hash for tx_hash in handle.identifiers if tx_hash not in ordered)
            return PartiallyLanded(landed=tuple(ordered), missing=missing, receipts=ordered)
        return None

    def _read(self, fn, *args, cancel):
        delays = self.backoff.delays()
        while True:
            try:
                return fn(*args)
            except ChainReadError as exc:
                delay = next(delays, None)
                if delay is None:
                    raise ChainUnavailable(f'chain reads failed after {self.backoff.max_retries} retries: {exc}') from exc
                logger.warning('Chain read failed (%s), retrying in %.2fs', exc, delay)
                if cancel.wait(delay):
                    raise ResolutionCancelled('cancelled while retrying a chain read') from exc
