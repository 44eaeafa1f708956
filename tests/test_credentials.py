"""Tests for credential storage and auth state."""

import json
import stat
from pathlib import Path

import pytest

from spacesync.auth import AuthState, CredentialStore


class TestCredentialStore:
    """Tests for CredentialStore."""

    @pytest.fixture
    def temp_store(self, tmp_path: Path) -> CredentialStore:
        """Create a credential store with temp directory."""
        return CredentialStore(config_dir=tmp_path / "creds")

    def test_store_and_retrieve(self, temp_store: CredentialStore):
        """Should store and retrieve credentials."""
        temp_store.store(
            server_url="https://space.example.com",
            access_token="secret-token",
            user_email="ada@example.com",
        )

        cred = temp_store.get(server_url="https://space.example.com")

        assert cred is not None
        assert cred.access_token == "secret-token"
        assert cred.user_email == "ada@example.com"
        assert cred.created_at

    def test_get_nonexistent(self, temp_store: CredentialStore):
        """Should return None for nonexistent credentials."""
        assert temp_store.get(server_url="https://space.example.com") is None

    def test_file_is_owner_only(self, temp_store: CredentialStore):
        """Should write the credentials file with 0600 permissions."""
        temp_store.store(server_url="https://space.example.com", access_token="t")

        mode = stat.S_IMODE(temp_store.credentials_file.stat().st_mode)
        assert mode == 0o600

    def test_multiple_profiles(self, temp_store: CredentialStore):
        """Should support multiple profiles."""
        temp_store.store("https://space.example.com", "token-dev", profile="dev")
        temp_store.store("https://space.example.com", "token-prod", profile="prod")

        assert temp_store.get("https://space.example.com", "dev").access_token == "token-dev"
        assert temp_store.get("https://space.example.com", "prod").access_token == "token-prod"

    def test_delete_credential(self, temp_store: CredentialStore):
        """Should delete credentials."""
        temp_store.store("https://space.example.com", "secret")

        assert temp_store.delete("https://space.example.com") is True
        assert temp_store.get("https://space.example.com") is None

    def test_delete_nonexistent(self, temp_store: CredentialStore):
        """Should return False when deleting nonexistent."""
        assert temp_store.delete("https://space.example.com") is False

    def test_corrupt_file_reads_as_empty(self, temp_store: CredentialStore):
        """Should treat an unreadable credentials file as no credentials."""
        temp_store.config_dir.mkdir(parents=True)
        temp_store.credentials_file.write_text("{oops")

        assert temp_store.get("https://space.example.com") is None

    def test_stored_json_layout(self, temp_store: CredentialStore):
        """Should key entries by profile and host."""
        temp_store.store("https://space.example.com/api", "secret", profile="work")

        data = json.loads(temp_store.credentials_file.read_text())
        assert list(data) == ["work:space.example.com"]


class TestAuthState:
    """Tests for AuthState."""

    @pytest.fixture
    def state(self, tmp_path: Path) -> AuthState:
        return AuthState("https://space.example.com", CredentialStore(tmp_path))

    def test_sign_in_and_out(self, state: AuthState):
        """Should reflect sign in and sign out."""
        assert not state.is_authenticated

        state.sign_in("token-1")
        assert state.access_token == "token-1"

        state.sign_out()
        assert state.access_token is None

    def test_listeners(self, state: AuthState):
        """Should notify listeners until they unsubscribe."""
        seen = []
        unsubscribe = state.on_change(seen.append)

        state.sign_in("token-1")
        state.sign_out()
        unsubscribe()
        state.sign_in("token-2")

        assert seen == [True, False]

    def test_failing_listener_does_not_block_others(self, state: AuthState):
        """Should keep notifying after a listener raises."""
        seen = []

        def broken(authenticated):
            raise RuntimeError("listener bug")

        state.on_change(broken)
        state.on_change(seen.append)
        state.sign_in("token-1")

        assert seen == [True]

    def test_picks_up_sign_in_from_other_process(self, state: AuthState, tmp_path: Path):
        """Should re-read the credential file on every access."""
        other = AuthState("https://space.example.com", CredentialStore(tmp_path))

        other.sign_in("shared-token")

        assert state.access_token == "shared-token"
