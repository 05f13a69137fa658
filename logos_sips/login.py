import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.parse import quote, urljoin

import requests

from .config import Settings
from .cookies import CookieJar
from .errors import UpstreamTransportError

CONFIG_JS_PATH = "/application/jsConfig.php?template=/js/config.js"
MAX_REDIRECTS = 5
BODY_CHUNK_SIZE = 16 * 1024

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; logos-sips/0.1)",
    "Accept": "text/html, application/javascript;q=0.9, */*;q=0.5",
    "Accept-Language": "es-ES",
}

_CSRF_KEY_RE = re.compile(r'CSRFTokenKey:\s*"([^"]+)"')
_CSRF_VALUE_RE = re.compile(r'CSRFToken:\s*"([^"]+)"')
_CSRF_STRING_RE = re.compile(r'CSRFTokenString:\s*"([^"]+)"')

logger = logging.getLogger("logos-sips.login")


# ---------- CSRF tokens ----------


@dataclass(frozen=True)
class CsrfTokens:
    key: str = ""
    value: str = ""
    query_string: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.key and self.value and self.query_string)


def extract_csrf_tokens(js: str) -> CsrfTokens:
    """Pull the CSRF fragments out of the portal's jsConfig script.

    Missing fragments come back as empty strings; the login is still
    attempted, and a failed login shows up later as an empty SIPS page.
    """

    js = js or ""
    key = _CSRF_KEY_RE.search(js)
    value = _CSRF_VALUE_RE.search(js)
    query_string = _CSRF_STRING_RE.search(js)
    tokens = CsrfTokens(
        key=key.group(1) if key else "",
        value=value.group(1) if value else "",
        query_string=query_string.group(1) if query_string else "",
    )
    if not tokens.complete:
        logger.warning(
            "Incomplete CSRF tokens in jsConfig (key=%s value=%s string=%s)",
            bool(tokens.key),
            bool(tokens.value),
            bool(tokens.query_string),
        )
    return tokens


# ---------- HTTP with cookie jar and deadline ----------


class PortalClient:
    """Cookie-carrying HTTP access to the portal for one invocation.

    Every response (including redirect hops) is merged into ``jar`` and the
    jar is sent back as an explicit ``Cookie`` header. All calls share one
    deadline counted from construction.
    """

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.session.headers.update(HEADERS)
        self.jar = CookieJar()
        self._clock = clock
        self._deadline_at = clock() + settings.deadline

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            logger.debug("Session close failed", exc_info=True)

    def _remaining(self, step: str, url: str) -> float:
        remaining = self._deadline_at - self._clock()
        if remaining <= 0:
            raise UpstreamTransportError(
                step, url, f"invocation deadline of {self.settings.deadline}s exceeded"
            )
        return remaining

    def _timeout(self, step: str, url: str) -> float:
        return min(self.settings.request_timeout, self._remaining(step, url))

    def _read_body(self, step: str, url: str, response: requests.Response) -> None:
        # timeout= only bounds single socket reads; the body as a whole is
        # bounded by the invocation deadline, checked after every chunk.
        chunks = []
        try:
            self._remaining(step, url)
            for chunk in response.iter_content(chunk_size=BODY_CHUNK_SIZE):
                chunks.append(chunk)
                self._remaining(step, url)
        except UpstreamTransportError:
            logger.error("%s: deadline hit while reading %s", step, url)
            raise
        finally:
            response.close()
        response._content = b"".join(chunks)

    def _send(
        self,
        step: str,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[str] = None,
    ) -> requests.Response:
        request_headers = dict(headers or {})
        cookie_header = self.jar.to_header()
        if cookie_header:
            request_headers["Cookie"] = cookie_header
        try:
            response = self.session.request(
                method,
                url,
                headers=request_headers,
                data=data,
                allow_redirects=False,
                stream=True,
                timeout=self._timeout(step, url),
            )
            self._read_body(step, url, response)
        except requests.RequestException as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise UpstreamTransportError(step, url, str(exc)) from exc

        logger.debug("%s %s -> status %s", method, url, response.status_code)
        self.jar.merge_from(response)
        return response

    def get(
        self, step: str, url: str, headers: Optional[Dict[str, str]] = None
    ) -> requests.Response:
        """GET *url*, following redirects by hand so every hop's cookies are kept."""

        response = self._send(step, "GET", url, headers=headers)
        hops = 0
        while response.is_redirect:
            if hops >= MAX_REDIRECTS:
                raise UpstreamTransportError(step, url, f"more than {MAX_REDIRECTS} redirects")
            location = response.headers.get("Location") or "/"
            url = urljoin(response.url or url, location)
            logger.debug("%s: following redirect to %s", step, url)
            response = self._send(step, "GET", url, headers=headers)
            hops += 1

        self._check_status(step, url, response)
        return response

    def post_form(
        self, step: str, url: str, body: str, headers: Optional[Dict[str, str]] = None
    ) -> requests.Response:
        """POST a url-encoded body without following redirects."""

        post_headers = {
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            **(headers or {}),
        }
        response = self._send(step, "POST", url, headers=post_headers, data=body)
        if not 300 <= response.status_code < 400:
            self._check_status(step, url, response)
        return response

    @staticmethod
    def _check_status(step: str, url: str, response: requests.Response) -> None:
        if not 200 <= response.status_code < 300:
            logger.error("%s: %s answered with status %s", step, url, response.status_code)
            raise UpstreamTransportError(step, url, f"HTTP {response.status_code}")


# ---------- login state machine ----------


class SessionState(enum.Enum):
    START = "start"
    LANDING_FETCHED = "landing_fetched"
    PRE_LOGIN_CONFIG_FETCHED = "pre_login_config_fetched"
    LOGIN_SUBMITTED = "login_submitted"
    REDIRECTED = "redirected"
    POST_LOGIN_CONFIG_FETCHED = "post_login_config_fetched"
    READY = "ready"


@dataclass(frozen=True)
class AuthenticatedSession:
    """What the data query needs: the cookie header and the rotated CSRF string."""

    client: PortalClient
    tokens: CsrfTokens

    @property
    def cookie_header(self) -> str:
        return self.client.jar.to_header()


class SessionBuilder:
    """Walks the portal login one HTTP call per transition.

    ``advance()`` performs the transition out of the current state; each
    ``_from_*`` method can also be driven on its own in tests.
    """

    def __init__(self, client: PortalClient, username: str, password: str) -> None:
        self.client = client
        self._username = username
        self._password = password
        self.state = SessionState.START
        self.pre_login_tokens = CsrfTokens()
        self.post_login_tokens = CsrfTokens()
        self._login_response: Optional[requests.Response] = None
        self._transitions = {
            SessionState.START: self._from_start,
            SessionState.LANDING_FETCHED: self._from_landing_fetched,
            SessionState.PRE_LOGIN_CONFIG_FETCHED: self._from_pre_login_config,
            SessionState.LOGIN_SUBMITTED: self._from_login_submitted,
            SessionState.REDIRECTED: self._from_redirected,
            SessionState.POST_LOGIN_CONFIG_FETCHED: self._from_post_login_config,
        }

    @property
    def _root_url(self) -> str:
        return self.client.settings.url("/")

    def advance(self) -> SessionState:
        transition = self._transitions.get(self.state)
        if transition is None:
            raise RuntimeError(f"No transition out of state {self.state.value}")
        self.state = transition()
        logger.debug("Login state -> %s", self.state.value)
        return self.state

    def build(self) -> AuthenticatedSession:
        logger.info("Starting login to CRM portal %s", self.client.settings.base_url)
        while self.state is not SessionState.READY:
            self.advance()
        logger.info("Login flow finished, cookies=%s", self.client.jar.names())
        return AuthenticatedSession(client=self.client, tokens=self.post_login_tokens)

    def _fetch_config(self, step: str) -> CsrfTokens:
        response = self.client.get(
            step,
            self.client.settings.url(CONFIG_JS_PATH),
            headers={"Referer": self._root_url},
        )
        tokens = extract_csrf_tokens(response.text)
        logger.debug("%s: CSRF string length=%s", step, len(tokens.query_string))
        return tokens

    def _from_start(self) -> SessionState:
        self.client.get("landing", self.client.settings.base_url)
        return SessionState.LANDING_FETCHED

    def _from_landing_fetched(self) -> SessionState:
        self.pre_login_tokens = self._fetch_config("pre-login config")
        return SessionState.PRE_LOGIN_CONFIG_FETCHED

    def _from_pre_login_config(self) -> SessionState:
        body = (
            f"{self.pre_login_tokens.query_string}&cmd=login"
            f"&userLogin={quote(self._username, safe='')}"
            f"&userPassword={quote(self._password, safe='')}&keepAlive=on"
        )
        self._login_response = self.client.post_form(
            "login",
            self._root_url,
            body,
            headers={"Origin": self.client.settings.base_url, "Referer": self._root_url},
        )
        return SessionState.LOGIN_SUBMITTED

    def _from_login_submitted(self) -> SessionState:
        location = "/"
        if self._login_response is not None:
            location = self._login_response.headers.get("Location") or "/"
        target = location if location.startswith("http") else self.client.settings.url(location)
        self.client.get("post-login redirect", target)
        return SessionState.REDIRECTED

    def _from_redirected(self) -> SessionState:
        self.post_login_tokens = self._fetch_config("post-login config")
        return SessionState.POST_LOGIN_CONFIG_FETCHED

    def _from_post_login_config(self) -> SessionState:
        return SessionState.READY


def create_authenticated_session(
    settings: Settings, session: Optional[requests.Session] = None
) -> AuthenticatedSession:
    """Return a portal session logged in with the configured credentials."""

    settings.require_credentials()
    client = PortalClient(settings, session=session)
    builder = SessionBuilder(client, settings.username or "", settings.password or "")
    try:
        return builder.build()
    except Exception:
        client.close()
        raise
