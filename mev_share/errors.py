class MevShareError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(MevShareError):
    pass


class RelayError(MevShareError):
    """The relay rejected a request, or the request never reached it."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self):
        if self.code is None:
            return self.message
        return f'[{self.code}] {self.message}'


class ChainReadError(MevShareError):
    """Transient failure while reading chain state. Retried by the tracker."""


class ResolutionError(MevShareError):
    pass


class ChainUnavailable(ResolutionError):
    pass


class ResolutionStalled(ResolutionError):
    def __init__(self, handle, last_block):
        super().__init__(f'{handle} saw no terminal signal up to block {last_block}')
        self.handle = handle
        self.last_block = last_block


class ResolutionCancelled(ResolutionError):
    pass


class StreamError(MevShareError):
    pass


class HintDecodeError(StreamError):
    def __init__(self, reason, data):
        super().__init__(f'{reason}: {data[:200]!r}')
        self.reason = reason
        self.data = data


class StreamUnrecoverable(StreamError):
    def __init__(self, attempts, downtime, cause=None):
        super().__init__(f'hint stream gave up after {attempts} reconnect attempts ({downtime:.1f}s down)')
        self.attempts = attempts
        self.downtime = downtime
        self.cause = cause


class StreamClosed(StreamError):
    pass
