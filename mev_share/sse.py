# Server-sent events framing and the requests transport behind the hint stream
import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SSEMessage:
    data: str
    event: str = 'message'
    id: Optional[str] = None


def iter_sse_messages(lines):
    """
    Groups raw SSE lines into messages.

    `data:` lines accumulate until a blank line, `:` lines are comments
    (keep-alives). A message cut off by the end of the stream is discarded.
    """
    data = []
    event = None
    last_id = None
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode('utf-8', errors='replace')
        line = line.rstrip('\r')
        if not line:
            payload = '\n'.join(data)
            if payload:
                yield SSEMessage(data=payload, event=event or 'message', id=last_id)
            data = []
            event = None
            continue
        if line.startswith(':'):
            continue
        name, _, value = line.partition(':')
        if value.startswith(' '):
            value = value[1:]
        if name == 'data':
            data.append(value)
        elif name == 'event':
            event = value
        elif name == 'id':
            last_id = value
        elif name == 'retry':
            logger.debug('Ignoring server retry hint %s', value)


class SSEConnection:
    def __init__(self, response):
        self.response = response

    def lines(self):
        return self.response.iter_lines(decode_unicode=True)

    def close(self):
        self.response.close()


class SSETransport:
    def __init__(self, url, session=None, connect_timeout=10.0, idle_timeout=60.0):
        self.url = url
        self.session = session if session is not None else requests.Session()
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout

    def open(self, last_event_id=None):
        headers = {'Accept': 'text/event-stream', 'Cache-Control': 'no-cache'}
        if last_event_id is not None:
            headers['Last-Event-ID'] = last_event_id
        response = self.session.get(
            self.url,
            headers=headers,
            stream=True,
            timeout=(self.connect_timeout, self.idle_timeout),
        )
        try:
            response.raise_for_status()
        except requests.HTTPError:
            response.close()
            raise
        if response.encoding is None:
            response.encoding = 'utf-8'
        return SSEConnection(response)
