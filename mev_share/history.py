import logging

import requests

from mev_share.errors import HintDecodeError, RelayError
from mev_share.hints import hint_from_json
from mev_share.types import EventHistory, EventHistoryInfo

logger = logging.getLogger(__name__)


class EventHistoryClient:
    """Past hint events, as served by the relay's REST history API."""

    def __init__(self, base_url, session=None, timeout=10.0):
        self.base_url = base_url.rstrip('/')
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def _get(self, path, params=None):
        url = f'{self.base_url}/{path}'
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise RelayError(f'GET {url} failed: {exc}') from exc
        except ValueError as exc:
            raise RelayError(f'GET {url} returned invalid JSON: {exc}') from exc

    def get_info(self):
        info = self._get('history/info')
        try:
            return EventHistoryInfo(
                min_block=int(info['minBlock']),
                max_block=int(info['maxBlock']),
                min_timestamp=int(info['minTimestamp']),
                max_timestamp=int(info['maxTimestamp']),
                count=int(info['count']),
                max_limit=int(info['maxLimit']),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise RelayError(f'unexpected history info: {info}') from exc

    def get_history(self, params):
        events = self._get('history', params.to_query())
        if not isinstance(events, list):
            raise RelayError(f'unexpected history response: {events}')
        history = []
        for event in events:
            try:
                history.append(EventHistory(
                    block=int(event['block']),
                    timestamp=int(event['timestamp']),
                    hint=hint_from_json(event['hint'], str(event)),
                ))
            except (KeyError, TypeError, ValueError, HintDecodeError) as exc:
                logger.warning('Skipping malformed history event: %s', exc)
        return history
