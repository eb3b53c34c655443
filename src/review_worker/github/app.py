"""GitHub App authentication: app JWTs and installation tokens."""

import logging
import threading
import time
from dataclasses import dataclass

import jwt
import requests

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

# Refresh installation tokens this long before GitHub expires them
TOKEN_REFRESH_MARGIN_SECONDS = 60


class GitHubAppError(Exception):
    """Raised when the app cannot authenticate with GitHub."""


@dataclass
class _CachedToken:
    token: str
    expires_at: float


class GitHubAppAuth:
    """Issues installation access tokens for a GitHub App."""

    def __init__(self, app_id: str, private_key: str, base_url: str | None = None) -> None:
        """Initialize app authentication.

        Args:
            app_id: GitHub App id
            private_key: PEM-encoded app private key
            base_url: Optional REST base URL for GitHub Enterprise
        """
        self.app_id = str(app_id)
        self._private_key = private_key
        self.base_url = (base_url or GITHUB_API_URL).rstrip("/")
        self._tokens: dict[int, _CachedToken] = {}
        self._slug: str | None = None
        self._lock = threading.Lock()

    def create_jwt(self) -> str:
        """Short-lived JWT identifying the app itself."""
        now = int(time.time())
        payload = {"iat": now - 60, "exp": now + 9 * 60, "iss": self.app_id}
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    def _app_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.create_jwt()}",
            "Accept": "application/vnd.github+json",
        }

    def get_installation_token(self, installation_id: int) -> str:
        """Installation access token, cached until shortly before it expires.

        Raises:
            GitHubAppError: If GitHub rejects the request
        """
        with self._lock:
            cached = self._tokens.get(installation_id)
            if cached and cached.expires_at - TOKEN_REFRESH_MARGIN_SECONDS > time.time():
                return cached.token

        url = f"{self.base_url}/app/installations/{installation_id}/access_tokens"
        try:
            response = requests.post(url, headers=self._app_headers(), timeout=30)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise GitHubAppError(
                f"Failed to create installation token for {installation_id}: {e}"
            ) from e

        # GitHub tokens last one hour
        expires_at = time.time() + 60 * 60
        token = _CachedToken(token=data["token"], expires_at=expires_at)
        with self._lock:
            self._tokens[installation_id] = token
        logger.debug(f"Created installation token for {installation_id}")
        return token.token

    def get_app_slug(self) -> str:
        """The app's slug; its bot user is ``{slug}[bot]``.

        Raises:
            GitHubAppError: If the app cannot be fetched
        """
        if self._slug:
            return self._slug
        try:
            response = requests.get(f"{self.base_url}/app", headers=self._app_headers(), timeout=30)
            response.raise_for_status()
            slug = response.json()["slug"]
        except (requests.RequestException, KeyError) as e:
            raise GitHubAppError(f"Could not fetch app information: {e}") from e
        self._slug = slug
        return slug
