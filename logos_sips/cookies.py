import logging
import re
from typing import Dict, Iterable, List

logger = logging.getLogger("logos-sips.cookies")

# A comma only starts a new cookie when it is followed by "name=". Commas in
# Expires dates ("Wed, 21 Oct 2015") are followed by a space-separated word.
_SET_COOKIE_SPLIT = re.compile(r",\s*(?=[^\s;,=]+=)")


def split_set_cookie(raw: str) -> List[str]:
    """Split a comma-joined ``Set-Cookie`` header into individual cookies."""

    if not raw:
        return []
    return [part for part in _SET_COOKIE_SPLIT.split(raw) if part.strip()]


def _set_cookie_entries(headers) -> List[str]:
    # urllib3's HTTPHeaderDict keeps repeated headers apart
    getlist = getattr(headers, "getlist", None)
    if callable(getlist):
        entries = list(getlist("Set-Cookie"))
        if entries:
            return [e for raw in entries for e in split_set_cookie(raw)]
    raw = headers.get("Set-Cookie") if headers is not None else None
    return split_set_cookie(raw or "")


class CookieJar:
    """Name -> value cookie store for one portal session.

    No expiry, domain or path handling: everything the portal sets during the
    session is sent back on every following request.
    """

    def __init__(self) -> None:
        self._jar: Dict[str, str] = {}

    def merge_from(self, response) -> None:
        """Merge the cookies set by a ``requests.Response``."""

        raw = getattr(response, "raw", None)
        raw_headers = getattr(raw, "headers", None)
        if raw_headers is not None and callable(getattr(raw_headers, "getlist", None)):
            self.merge_from_headers(raw_headers)
        else:
            self.merge_from_headers(response.headers)

    def merge_from_headers(self, headers) -> None:
        self.merge_entries(_set_cookie_entries(headers))

    def merge_entries(self, entries: Iterable[str]) -> None:
        for raw_cookie in entries:
            item = raw_cookie.split(";", 1)[0].strip()
            name, sep, value = item.partition("=")
            if not sep or not name:
                continue
            self._jar[name] = value
        logger.debug("Cookie jar now holds: %s", list(self._jar))

    def get(self, name: str):
        return self._jar.get(name)

    def names(self) -> List[str]:
        return list(self._jar)

    def __len__(self) -> int:
        return len(self._jar)

    def to_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self._jar.items())
