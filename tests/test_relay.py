import json
from unittest.mock import MagicMock

import pytest
import requests
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from conftest import AUTH_KEY, tx_hash
from mev_share.errors import RelayError
from mev_share.relay import RelayClient
from mev_share.signing import flashbots_signature
from mev_share.types import HashItem, SendBundleParams, SendTransactionParams, SignedItem


def relay_with(response_body):
    session = MagicMock()
    session.post.return_value.text = json.dumps(response_body)
    session.post.return_value.status_code = 200
    return RelayClient('https://relay.example', AUTH_KEY, session=session), session


def sent_request(session):
    _, kwargs = session.post.call_args
    return kwargs['data'], kwargs['headers']


def test_signature_recovers_to_auth_address():
    body = '{"jsonrpc":"2.0"}'
    address, signature = flashbots_signature(body, AUTH_KEY).split(':')

    message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
    assert Account.recover_message(message, signature=signature) == address
    assert address == Account.from_key(AUTH_KEY).address


def test_send_bundle():
    relay, session = relay_with({'jsonrpc': '2.0', 'id': 1, 'result': {'bundleHash': '0x' + 'AA' * 32}})
    params = SendBundleParams(body=[HashItem(tx_hash(1)), SignedItem(b'\x01' * 10)], block=10)

    assert relay.send_bundle(params) == '0x' + 'aa' * 32

    body, headers = sent_request(session)
    payload = json.loads(body)
    assert payload['method'] == 'mev_sendBundle'
    assert payload['params'] == [params.to_json()]
    assert headers['Content-Type'] == 'application/json'
    assert headers['X-Flashbots-Signature'] == flashbots_signature(body, AUTH_KEY)


def test_send_private_transaction():
    relay, session = relay_with({'jsonrpc': '2.0', 'id': 1, 'result': tx_hash(7)})

    assert relay.send_private_transaction(SendTransactionParams(tx=b'\x02' * 10)) == tx_hash(7)
    body, _ = sent_request(session)
    assert json.loads(body)['method'] == 'eth_sendPrivateTransaction'


def test_request_ids_increase():
    relay, session = relay_with({'result': tx_hash(7)})
    relay.send_request('eth_sendPrivateTransaction', [])
    first = json.loads(sent_request(session)[0])['id']
    relay.send_request('eth_sendPrivateTransaction', [])
    second = json.loads(sent_request(session)[0])['id']

    assert second == first + 1


def test_json_rpc_error():
    relay, _ = relay_with({'jsonrpc': '2.0', 'id': 1, 'error': {'code': -32000, 'message': 'unable to decode txs'}})

    with pytest.raises(RelayError) as info:
        relay.send_bundle(SendBundleParams(body=[HashItem(tx_hash(1))], block=1))
    assert info.value.code == -32000
    assert str(info.value) == '[-32000] unable to decode txs'


def test_missing_bundle_hash():
    relay, _ = relay_with({'result': {}})

    with pytest.raises(RelayError):
        relay.send_bundle(SendBundleParams(body=[HashItem(tx_hash(1))], block=1))


def test_non_json_response():
    relay, session = relay_with({})
    session.post.return_value.text = '<html>bad gateway</html>'
    session.post.return_value.status_code = 502

    with pytest.raises(RelayError, match='HTTP 502'):
        relay.send_request('mev_sendBundle', [])


def test_transport_error_is_not_retried():
    relay, session = relay_with({})
    session.post.side_effect = requests.ConnectionError('refused')

    with pytest.raises(RelayError) as info:
        relay.send_request('mev_sendBundle', [])
    assert isinstance(info.value.__cause__, requests.ConnectionError)
    assert session.post.call_count == 1
