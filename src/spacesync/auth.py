"""
Authentication state and file-based credential storage.

Bearer tokens are kept in ``~/.spacesync/credentials.json`` with owner-only
permissions, one entry per server/profile. :class:`AuthState` is the live view
the rest of the library consults; it re-reads the credential file on demand so
a sign-in performed by another process is picked up without a restart.
"""

import json
import logging
import os
import stat
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_SPACESYNC_DIR = Path.home() / ".spacesync"
CREDENTIALS_FILE = "credentials.json"


@dataclass
class StoredCredential:
    """A stored bearer credential."""

    server_url: str
    access_token: str
    created_at: str
    profile: str = "default"
    user_email: Optional[str] = None


class CredentialStore:
    """
    File-based credential storage.

    Supports multiple profiles for different servers.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or DEFAULT_SPACESYNC_DIR
        self.credentials_file = self.config_dir / CREDENTIALS_FILE

    def _ensure_config_dir(self) -> None:
        if not self.config_dir.exists():
            self.config_dir.mkdir(parents=True, mode=0o700)
            logger.debug(f"Created credentials directory: {self.config_dir}")

    def _secure_file_permissions(self) -> None:
        if self.credentials_file.exists():
            os.chmod(self.credentials_file, stat.S_IRUSR | stat.S_IWUSR)

    def _load_credentials(self) -> dict[str, dict]:
        if not self.credentials_file.exists():
            return {}

        try:
            with open(self.credentials_file) as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load credentials: {e}")
            return {}

    def _save_credentials(self, credentials: dict[str, dict]) -> None:
        self._ensure_config_dir()

        with open(self.credentials_file, "w") as f:
            json.dump(credentials, f, indent=2)

        self._secure_file_permissions()

    @staticmethod
    def _make_profile_key(server_url: str, profile: str) -> str:
        parsed = urlparse(server_url)
        host = parsed.netloc or parsed.path
        return f"{profile}:{host}"

    def store(
        self,
        server_url: str,
        access_token: str,
        profile: str = "default",
        user_email: Optional[str] = None,
    ) -> None:
        """Store a bearer credential for a server profile."""
        credentials = self._load_credentials()

        key = self._make_profile_key(server_url, profile)
        credentials[key] = {
            "server_url": server_url,
            "access_token": access_token,
            "profile": profile,
            "user_email": user_email,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        self._save_credentials(credentials)
        logger.info(f"Stored credentials for profile '{profile}'")

    def get(self, server_url: str, profile: str = "default") -> Optional[StoredCredential]:
        """Retrieve a stored credential, or None."""
        credentials = self._load_credentials()
        key = self._make_profile_key(server_url, profile)

        cred = credentials.get(key)
        if not cred or not cred.get("access_token"):
            return None

        return StoredCredential(
            server_url=cred["server_url"],
            access_token=cred["access_token"],
            profile=cred.get("profile", "default"),
            user_email=cred.get("user_email"),
            created_at=cred.get("created_at", ""),
        )

    def delete(self, server_url: str, profile: str = "default") -> bool:
        """Delete a stored credential. Returns False if it did not exist."""
        credentials = self._load_credentials()
        key = self._make_profile_key(server_url, profile)

        if key not in credentials:
            return False

        del credentials[key]
        self._save_credentials(credentials)
        logger.info(f"Deleted credentials for profile '{profile}'")
        return True


class AuthState:
    """
    Current authentication state of this client.

    ``access_token`` is looked up on every access; nothing about being signed
    in is cached. Listeners registered with :meth:`on_change` are told when
    this process signs in or out.
    """

    def __init__(
        self,
        server_url: str,
        credential_store: Optional[CredentialStore] = None,
        profile: str = "default",
    ):
        self.server_url = server_url
        self.credential_store = credential_store or CredentialStore()
        self.profile = profile
        self._listeners: list[Callable[[bool], None]] = []
        self._lock = threading.Lock()

    @property
    def access_token(self) -> Optional[str]:
        cred = self.credential_store.get(self.server_url, self.profile)
        return cred.access_token if cred else None

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def sign_in(self, access_token: str, user_email: Optional[str] = None) -> None:
        self.credential_store.store(
            self.server_url, access_token, profile=self.profile, user_email=user_email
        )
        self._notify(True)

    def sign_out(self) -> None:
        self.credential_store.delete(self.server_url, self.profile)
        self._notify(False)

    def on_change(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, authenticated: bool) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(authenticated)
            except Exception as e:
                logger.error(f"Auth listener failed: {e}")


class StaticAuthState(AuthState):
    """AuthState backed by a fixed token instead of the credential file."""

    def __init__(self, access_token: Optional[str] = None, server_url: str = ""):
        super().__init__(server_url=server_url, credential_store=None)
        self._token = access_token

    @property
    def access_token(self) -> Optional[str]:
        return self._token

    def sign_in(self, access_token: str, user_email: Optional[str] = None) -> None:
        self._token = access_token
        self._notify(True)

    def sign_out(self) -> None:
        self._token = None
        self._notify(False)
