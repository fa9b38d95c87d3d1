"""Account and session data models."""
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional


@dataclass
class User:
    """An account holder (a dog owner)."""
    id: str
    name: str
    email: str
    phone_number: Optional[str] = None
    photos: Optional[List[str]] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def first_name(self) -> str:
        parts = self.name.split(" ")
        return parts[0] if parts else self.name

    @property
    def last_name(self) -> str:
        parts = self.name.split(" ")
        return " ".join(parts[1:]) if len(parts) > 1 else ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            email=data["email"],
            phone_number=data.get("phone_number"),
            photos=data.get("photos"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AuthResponse:
    """Envelope returned by the /user endpoints."""
    success: bool
    message: Optional[str] = None
    user: Optional[User] = None
    token: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthResponse":
        user = data.get("user")
        return cls(
            success=bool(data.get("success", False)),
            message=data.get("message"),
            user=User.from_dict(user) if user else None,
            token=data.get("token"),
        )
