import json
import re

from mev_share.errors import HintDecodeError
from mev_share.types import EventType, Hint, HintTransaction, to_hash

_HASH = re.compile(r'0x[0-9a-fA-F]{64}')
_ADDRESS = re.compile(r'0x[0-9a-fA-F]{40}')
_SELECTOR = re.compile(r'0x[0-9a-fA-F]{8}')
_HEX = re.compile(r'0x[0-9a-fA-F]*')


def _quantity(value, name, data):
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and _HEX.fullmatch(value) and len(value) > 2:
        return int(value, 16)
    if isinstance(value, str) and value.isascii() and value.isdecimal():
        try:
            return int(value)
        except ValueError:
            # past the interpreter's digit limit
            pass
    raise HintDecodeError(f'{name} is not a quantity', data)


def _checked(value, pattern, name, data):
    if value is None:
        return None
    if not isinstance(value, str) or not pattern.fullmatch(value):
        raise HintDecodeError(f'bad {name}', data)
    return value.lower()


def _transaction(raw, data):
    if not isinstance(raw, dict):
        raise HintDecodeError('tx entry is not an object', data)
    return HintTransaction(
        to=_checked(raw.get('to'), _ADDRESS, 'to', data),
        function_selector=_checked(raw.get('functionSelector'), _SELECTOR, 'functionSelector', data),
        call_data=_checked(raw.get('callData'), _HEX, 'callData', data),
    )


def hint_from_json(event, data='', sequence=0):
    """Builds a Hint from an already parsed event object."""
    if not isinstance(event, dict):
        raise HintDecodeError('event is not an object', data)
    tx_hash = event.get('hash')
    if not isinstance(tx_hash, str) or not _HASH.fullmatch(tx_hash):
        raise HintDecodeError('missing or bad hash', data)

    logs = event.get('logs')
    if logs is not None:
        if not isinstance(logs, list) or not all(isinstance(log, dict) for log in logs):
            raise HintDecodeError('logs is not a list of objects', data)
        logs = tuple(logs)

    txs = event.get('txs')
    if txs is not None:
        if not isinstance(txs, list):
            raise HintDecodeError('txs is not a list', data)
        txs = tuple(_transaction(tx, data) for tx in txs)

    # a transaction shows up as a bundle of at most one tx
    event_type = EventType.TRANSACTION if txs is None or len(txs) <= 1 else EventType.BUNDLE

    return Hint(
        hash=to_hash(tx_hash),
        event_type=event_type,
        logs=logs,
        txs=txs,
        mev_gas_price=_quantity(event.get('mevGasPrice'), 'mevGasPrice', data),
        gas_used=_quantity(event.get('gasUsed'), 'gasUsed', data),
        sequence=sequence,
    )


def decode_hint(data, sequence=0):
    """Decodes one SSE message payload into a Hint, raising HintDecodeError if it is malformed."""
    try:
        event = json.loads(data)
    except (ValueError, RecursionError) as exc:
        raise HintDecodeError(f'invalid JSON ({exc!r})', data) from None
    try:
        return hint_from_json(event, data, sequence)
    except (ValueError, TypeError, RecursionError) as exc:
        raise HintDecodeError(f'unreadable event ({exc!r})', data) from None
