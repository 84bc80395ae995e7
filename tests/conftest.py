import json
import threading
import time

import pytest
import requests

from mev_share.chain import ChainReader
from mev_share.errors import ChainReadError
from mev_share.types import Receipt

# py_ecc (imported via eth_account) raises the recursion limit to 100000, which
# lets deeply nested JSON overflow the C stack before RecursionError is raised.
# Give worker threads enough stack for that limit (the main thread needs
# `ulimit -s unlimited`).
threading.stack_size(64 * 1024 * 1024)

AUTH_KEY = '0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318'


def tx_hash(n):
    return '0x%064x' % n


class FakeChain(ChainReader):
    """
    Deterministic chain. Every current_block() call returns the head and then
    advances it by `step`. Receipts are only visible once their block is at or
    below the last head handed out.
    """

    def __init__(self, head, step=1, failures=0):
        self.head = head
        self.step = step
        self.tip = head
        self.failures = failures
        self.blocks = {}
        self.receipts = {}
        self.block_reads = []
        self.receipt_reads = []
        self._lock = threading.Lock()

    def land(self, tx, block, success=True):
        self.blocks.setdefault(block, []).append(tx)
        self.receipts[tx] = Receipt(tx_hash=tx, success=success, block_number=block, gas_used=21000)

    def _maybe_fail(self):
        if self.failures > 0:
            self.failures -= 1
            raise ChainReadError('node unavailable')

    def current_block(self):
        with self._lock:
            self._maybe_fail()
            head = self.tip = self.head
            self.head += self.step
            return head

    def block_transactions(self, number):
        self._maybe_fail()
        self.block_reads.append(number)
        return tuple(self.blocks.get(number, ()))

    def transaction_receipt(self, tx):
        self._maybe_fail()
        self.receipt_reads.append(tx)
        receipt = self.receipts.get(tx)
        if receipt is None or receipt.block_number > self.tip:
            return None
        return receipt


class FakeConnection:
    def __init__(self, lines, error=None, block=False):
        self._lines = list(lines)
        self.error = error
        self.block = block
        self.closed = threading.Event()

    def lines(self):
        for line in self._lines:
            if self.closed.is_set():
                return
            yield line
        if self.error is not None:
            raise self.error
        if self.block:
            self.closed.wait()

    def close(self):
        self.closed.set()


class FakeTransport:
    """Each open() takes the next scripted connection (or raises it). An empty script means the relay is down."""

    def __init__(self, *script):
        self.script = list(script)
        self.opens = 0
        self.last_event_ids = []

    def open(self, last_event_id=None):
        self.opens += 1
        self.last_event_ids.append(last_event_id)
        if not self.script:
            raise requests.ConnectionError('relay unreachable')
        entry = self.script.pop(0)
        if isinstance(entry, Exception):
            raise entry
        return entry


def hint_event(n, txs=None):
    event = {'hash': tx_hash(n), 'logs': [], 'mevGasPrice': '0x3b9aca00', 'gasUsed': '0x5208'}
    if txs is not None:
        event['txs'] = txs
    return json.dumps(event)


def sse_lines(*payloads):
    lines = []
    for payload in payloads:
        lines += ['data: ' + payload, '']
    return lines


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError('condition not reached in time')
        time.sleep(0.005)


@pytest.fixture
def chain():
    return FakeChain(head=10)
