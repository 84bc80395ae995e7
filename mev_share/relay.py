import itertools
import json
import logging
import time

import requests

from mev_share.errors import RelayError
from mev_share.signing import flashbots_signature
from mev_share.types import to_hash

logger = logging.getLogger(__name__)

SEND_PRIVATE_TRANSACTION = 'eth_sendPrivateTransaction'
SEND_BUNDLE = 'mev_sendBundle'


class RelayClient:
    """Signed JSON-RPC calls to the MEV-Share relay. Failures are raised as RelayError and never retried."""

    def __init__(self, endpoint, auth_privkey, session=None, timeout=10.0):
        self.endpoint = endpoint
        self.auth_privkey = auth_privkey
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        # time-derived start so ids from separate clients rarely collide
        self._ids = itertools.count(time.time_ns() % 1_000_000)

    def send_request(self, method, params):
        payload = {'jsonrpc': '2.0', 'id': next(self._ids), 'method': method, 'params': params}
        body = json.dumps(payload)
        headers = {
            'Content-Type': 'application/json',
            'X-Flashbots-Signature': flashbots_signature(body, self.auth_privkey),
        }
        logger.debug('Relay request %s', body)
        try:
            response = self.session.post(self.endpoint, data=body, headers=headers, timeout=self.timeout)
            text = response.text
        except requests.RequestException as exc:
            raise RelayError(f'{method} request failed: {exc}') from exc
        logger.debug('Relay response %s', text)

        try:
            response_json = json.loads(text)
        except ValueError:
            raise RelayError(f'{method} got a non-JSON response (HTTP {response.status_code}): {text[:200]}') from None

        if isinstance(response_json, dict) and 'result' in response_json:
            return response_json['result']
        error = response_json.get('error') if isinstance(response_json, dict) else None
        if isinstance(error, dict):
            raise RelayError(error.get('message', str(error)), code=error.get('code'))
        if error is not None:
            raise RelayError(str(error))
        raise RelayError(f'Looks like we got an error! Payload {payload} response {response_json}')

    def send_private_transaction(self, params):
        """Returns the transaction hash the relay accepted."""
        tx_hash = self.send_request(SEND_PRIVATE_TRANSACTION, [params.to_json()])
        logger.info('Relay accepted private transaction %s', tx_hash)
        return to_hash(tx_hash)

    def send_bundle(self, params):
        """Returns the bundle hash the relay accepted."""
        result = self.send_request(SEND_BUNDLE, [params.to_json()])
        if not isinstance(result, dict) or 'bundleHash' not in result:
            raise RelayError(f'{SEND_BUNDLE} returned no bundle hash: {result}')
        logger.info('Relay accepted bundle %s', result['bundleHash'])
        return to_hash(result['bundleHash'])
