"""Spotify authorization: consent via a loopback callback, then in-memory refresh.

State machine:
    UNAUTHENTICATED -> PENDING_USER_CONSENT -> AUTHENTICATED
    AUTHENTICATED -> REFRESHING -> AUTHENTICATED | EXPIRED

Opening the browser is the caller's job; this module only builds the URL and
listens for the redirect.
"""

import logging
import secrets
import threading
import time
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

import requests
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from discoverfm.data.errors import AuthDenied, AuthExpired
from discoverfm.data.models import AuthToken
from discoverfm.data.spotify_client import build_oauth

logger = logging.getLogger(__name__)

_SUCCESS_PAGE = (
    "<html><body><h1>Authorization successful!</h1>"
    "<p>You can close this window now.</p></body></html>"
)
_DENIED_PAGE = (
    "<html><body><h1>Authorization failed</h1>"
    "<p>Return to the terminal for details.</p></body></html>"
)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING_USER_CONSENT = "pending_user_consent"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    EXPIRED = "expired"


class _CallbackServer(HTTPServer):
    callback_path: str
    deliver: Callable[[dict[str, str]], None]


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self.send_response(404)
            self.end_headers()
            self.wfile.write(b"Not Found")
            return

        params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        ok = "code" in params and "error" not in params
        self.send_response(200 if ok else 400)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write((_SUCCESS_PAGE if ok else _DENIED_PAGE).encode("utf-8"))
        self.server.deliver(params)

    def log_message(self, format, *args):
        logger.debug("callback: " + format, *args)


class CallbackListener:
    """Loopback HTTP server that captures the first OAuth redirect it receives."""

    def __init__(self, host: str = "127.0.0.1", port: int = 8888, path: str = "/callback"):
        self.host = host
        self.path = path
        self._requested_port = port
        self._server: Optional[_CallbackServer] = None
        self._thread: Optional[threading.Thread] = None
        self._received = threading.Event()
        self._params: Optional[dict[str, str]] = None

    @property
    def port(self) -> int:
        if self._server is None:
            return self._requested_port
        return self._server.server_address[1]

    def start(self) -> None:
        try:
            self._server = _CallbackServer((self.host, self._requested_port), _CallbackHandler)
        except OSError as e:
            raise AuthDenied(
                f"Callback port {self.host}:{self._requested_port} unavailable: {e.strerror or e}"
            ) from e
        self._server.callback_path = self.path
        self._server.deliver = self._deliver
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.debug("Callback listener on http://%s:%d%s", self.host, self.port, self.path)

    def _deliver(self, params: dict[str, str]) -> None:
        if not self._received.is_set():
            self._params = params
            self._received.set()

    def wait(self, timeout: float) -> Optional[dict[str, str]]:
        """Query parameters of the redirect, or None if nothing arrived in time."""
        if not self._received.wait(timeout):
            return None
        return self._params

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None


class AuthManager:
    """Owns the Spotify token for the run and keeps it fresh."""

    def __init__(
        self,
        oauth: SpotifyOAuth,
        callback_host: str = "127.0.0.1",
        callback_port: int = 8888,
        callback_path: str = "/callback",
        consent_timeout: float = 120.0,
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.oauth = oauth
        self.callback_host = callback_host
        self.callback_port = callback_port
        self.callback_path = callback_path
        self.consent_timeout = consent_timeout
        self.refresh_margin = refresh_margin
        self.clock = clock
        self.state = AuthState.UNAUTHENTICATED
        self.csrf_state = secrets.token_urlsafe(16)
        self.listener: Optional[CallbackListener] = None
        self._token: Optional[AuthToken] = None
        self._refresh_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "AuthManager":
        redirect = urlparse(settings.resolved_redirect_uri)
        oauth = build_oauth(
            settings.spotify_client_id,
            settings.spotify_client_secret,
            settings.resolved_redirect_uri,
        )
        return cls(
            oauth,
            callback_host=redirect.hostname or "127.0.0.1",
            callback_port=redirect.port or settings.callback_port,
            callback_path=redirect.path or "/callback",
            consent_timeout=settings.consent_timeout,
            refresh_margin=settings.refresh_margin,
        )

    def authorization_url(self) -> str:
        """Start the callback listener and return the URL the user must visit."""
        if self.listener is None:
            listener = CallbackListener(self.callback_host, self.callback_port, self.callback_path)
            listener.start()
            self.listener = listener
        url = self.oauth.get_authorize_url(state=self.csrf_state)
        self.state = AuthState.PENDING_USER_CONSENT
        return url

    def wait_for_consent(self, timeout: Optional[float] = None) -> AuthToken:
        """Block until the redirect arrives, then exchange the code for a token."""
        if self.state is not AuthState.PENDING_USER_CONSENT or self.listener is None:
            raise AuthDenied("Authorization was not started; call authorization_url() first")
        timeout = self.consent_timeout if timeout is None else timeout
        try:
            params = self.listener.wait(timeout)
        finally:
            self.listener.stop()
            self.listener = None

        if params is None:
            self.state = AuthState.UNAUTHENTICATED
            raise AuthDenied(f"No authorization callback received within {timeout:g}s")
        try:
            code = self._check_callback(params)
            token_info = self.oauth.get_access_token(code, as_dict=True, check_cache=False)
        except AuthDenied:
            self.state = AuthState.UNAUTHENTICATED
            raise
        except (SpotifyOauthError, requests.RequestException) as e:
            self.state = AuthState.UNAUTHENTICATED
            raise AuthDenied(f"Authorization code exchange failed: {e}") from e

        self._token = AuthToken.from_token_info(self._with_expiry(token_info))
        self.state = AuthState.AUTHENTICATED
        logger.info("Spotify authorization complete")
        return self._token

    def _check_callback(self, params: dict[str, str]) -> str:
        if "error" in params:
            raise AuthDenied(f"Authorization rejected: {params['error']}")
        if params.get("state") != self.csrf_state:
            raise AuthDenied("Authorization callback state mismatch")
        if not params.get("code"):
            raise AuthDenied("Authorization callback carried no code")
        return params["code"]

    def authenticate(self, open_url: Optional[Callable[[str], object]] = None) -> AuthToken:
        """Build the URL, hand it to open_url (e.g. a browser launcher), wait for consent."""
        url = self.authorization_url()
        if open_url is not None:
            open_url(url)
        return self.wait_for_consent()

    def _with_expiry(self, token_info: dict) -> dict:
        if "expires_at" not in token_info:
            token_info = {**token_info, "expires_at": self.clock() + int(token_info.get("expires_in", 3600))}
        return token_info

    def _is_fresh(self) -> bool:
        return self._token is not None and self._token.expires_at - self.clock() > self.refresh_margin

    def current_token(self) -> AuthToken:
        """A token valid for at least refresh_margin seconds.

        Concurrent callers that find the token stale queue on one lock; the
        first refreshes and the rest see the fresh token on re-check.
        """
        if self.state is AuthState.EXPIRED:
            raise AuthExpired("Spotify token expired and could not be refreshed")
        if self._token is None:
            raise AuthDenied("Spotify authorization has not completed")
        if self._is_fresh():
            return self._token
        with self._refresh_lock:
            if self.state is AuthState.EXPIRED:
                raise AuthExpired("Spotify token expired and could not be refreshed")
            if not self._is_fresh():
                self._refresh()
            return self._token

    def _refresh(self) -> None:
        self.state = AuthState.REFRESHING
        if not self._token.refresh_token:
            self.state = AuthState.EXPIRED
            raise AuthExpired("No refresh token available")
        logger.info("Refreshing Spotify access token")
        try:
            token_info = self.oauth.refresh_access_token(self._token.refresh_token)
        except (SpotifyOauthError, requests.RequestException) as e:
            self.state = AuthState.EXPIRED
            raise AuthExpired(f"Token refresh failed: {e}") from e
        if not token_info or "access_token" not in token_info:
            self.state = AuthState.EXPIRED
            raise AuthExpired("Token refresh returned no access token")
        self._token.update(self._with_expiry(token_info))
        self.state = AuthState.AUTHENTICATED

    def invalidate(self, stale_access_token: str) -> None:
        """Force a refresh on the next current_token() call after a 401.

        Only the token the failing request carried is invalidated; if another
        caller already refreshed it, the newer token is left alone.
        """
        with self._refresh_lock:
            if self._token is not None and self._token.access_token == stale_access_token:
                self._token.expires_at = 0.0
