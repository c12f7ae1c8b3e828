"""Self-service manage tokens: possession is authorization for one booking."""
from dataclasses import dataclass
import secrets

TOKEN_BYTES = 32
MIN_TOKEN_LENGTH = 10


class InvalidManageToken(ValueError):
    pass


@dataclass(frozen=True)
class ManageToken:
    value: str

    @classmethod
    def generate(cls) -> "ManageToken":
        return cls(secrets.token_urlsafe(TOKEN_BYTES))

    @classmethod
    def parse(cls, raw: str) -> "ManageToken":
        """Shape check only; whether it names a booking is the store's question"""
        raw = (raw or "").strip()
        if len(raw) < MIN_TOKEN_LENGTH or len(raw) > 128:
            raise InvalidManageToken("Invalid booking link")
        if not all(c.isalnum() or c in "-_" for c in raw):
            raise InvalidManageToken("Invalid booking link")
        return cls(raw)

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        # Never leak the capability into logs
        return f"ManageToken({self.value[:4]}...)"
