"""Pydantic models for peer discovery."""

from pydantic import BaseModel, Field


class PeerRecord(BaseModel):
    """A receiver seen through a discovery advertisement."""
    name: str
    host: str = ""
    addresses: list[str] = Field(default_factory=list)
    port: int
    attributes: dict[str, str] = Field(default_factory=dict)
    discovered_at: float  # Unix timestamp

    @property
    def address(self) -> str:
        """Preferred address to connect to."""
        return self.addresses[0] if self.addresses else self.host

    @property
    def handshake_path(self) -> str | None:
        return self.attributes.get("CPath") or None

    def matches(self, hint: str) -> bool:
        """Case-insensitive substring match of name or host, in either direction."""
        hint = hint.lower()
        if not hint:
            return False
        for field in (self.name, self.host):
            field = field.lower()
            if field and (hint in field or field in hint):
                return True
        return False
