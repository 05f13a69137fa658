class ConfigurationError(RuntimeError):
    """Required setting (portal credentials, timeouts) is missing or invalid."""


class UpstreamTransportError(RuntimeError):
    """Network failure or unexpected HTTP status while talking to the portal."""

    def __init__(self, step: str, url: str, message: str):
        super().__init__(f"{step}: {message} ({url})")
        self.step = step
        self.url = url
