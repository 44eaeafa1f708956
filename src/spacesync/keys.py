"""Well-known keys in the local key-value store."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class StoreKeys:
    """Key names for one namespace prefix (``space_`` by default)."""

    prefix: str = "space_"

    @property
    def session_prefix(self) -> str:
        return f"{self.prefix}session_"

    def session(self, session_id: int) -> str:
        return f"{self.session_prefix}{session_id}"

    def parse_session_key(self, key: str) -> Optional[int]:
        """Return the integer id encoded in a session key, or None."""
        if not key.startswith(self.session_prefix):
            return None
        suffix = key[len(self.session_prefix):]
        if not (suffix.isascii() and suffix.isdigit()):
            return None
        return int(suffix)

    @property
    def advisors(self) -> str:
        return f"{self.prefix}advisors"

    @property
    def advisor_groups(self) -> str:
        return f"{self.prefix}advisor_groups"

    @property
    def max_tokens(self) -> str:
        return f"{self.prefix}max_tokens"

    @property
    def reasoning_mode(self) -> str:
        return f"{self.prefix}reasoning_mode"

    @property
    def sidebar_collapsed(self) -> str:
        return f"{self.prefix}sidebar_collapsed"

    @property
    def auto_scroll(self) -> str:
        return f"{self.prefix}auto_scroll"

    @property
    def paragraph_spacing(self) -> str:
        return f"{self.prefix}paragraph_spacing"

    @property
    def migration_status(self) -> str:
        return f"{self.prefix}migration_status"

    @property
    def migration_date(self) -> str:
        return f"{self.prefix}migration_date"

    @property
    def migration_summary(self) -> str:
        return f"{self.prefix}migration_summary"

    @property
    def current_session(self) -> str:
        return f"{self.prefix}current_session"

    @property
    def current_conversation(self) -> str:
        return f"{self.prefix}current_conversation"

    def scalar_settings(self) -> dict[str, str]:
        """Map of preference field name -> store key."""
        return {
            "max_tokens": self.max_tokens,
            "reasoning_mode": self.reasoning_mode,
            "sidebar_collapsed": self.sidebar_collapsed,
            "auto_scroll": self.auto_scroll,
            "paragraph_spacing": self.paragraph_spacing,
        }
