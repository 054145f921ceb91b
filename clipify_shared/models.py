"""
Core data models for the Clipify desktop authentication subsystem.

This module defines the data structures shared by the token store, the
refresh service, the callback parser and the login session coordinator.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any


def normalize_plan(plan: Any) -> Optional[str]:
    """Return the plan only when it is a non-blank string."""
    if isinstance(plan, str) and plan.strip():
        return plan
    return None


@dataclass
class TokenRecord:
    """Access/refresh token pair with its metadata. Replaced whole, never patched."""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None
    expires_at: Optional[int] = None  # unix seconds; None means non-expiring
    issued_at: Optional[int] = None
    
    def to_metadata(self) -> Dict[str, Any]:
        """Build the token_metadata object persisted beside the tokens."""
        metadata: Dict[str, Any] = {'tokenType': self.token_type}
        if self.expires_at is not None:
            metadata['expiresAt'] = self.expires_at
        if self.scope is not None:
            metadata['scope'] = self.scope
        if self.issued_at is not None:
            metadata['issuedAt'] = self.issued_at
        return metadata
    
    @classmethod
    def from_storage(
        cls,
        access_token: str,
        refresh_token: Optional[str],
        metadata: Optional[Dict[str, Any]]
    ) -> 'TokenRecord':
        metadata = metadata or {}
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=metadata.get('tokenType') or "Bearer",
            scope=metadata.get('scope'),
            expires_at=metadata.get('expiresAt'),
            issued_at=metadata.get('issuedAt')
        )


@dataclass(frozen=True)
class UserProfile:
    """Profile of the signed-in user."""
    id: str
    email: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    plan: Optional[str] = None
    
    def __post_init__(self):
        if not self.id:
            raise ValueError("User ID cannot be empty")
        if not self.email:
            raise ValueError("User email cannot be empty")
        object.__setattr__(self, 'plan', normalize_plan(self.plan))
    
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfile':
        """Build a profile from stored or server JSON, ignoring unknown keys."""
        return cls(
            id=str(data['id']),
            email=data['email'],
            name=data.get('name'),
            avatar=data.get('avatar'),
            plan=data.get('plan')
        )


@dataclass(frozen=True)
class AuthState:
    """Snapshot of the authentication state handed to subscribers."""
    is_authenticated: bool = False
    is_loading: bool = False
    user: Optional[UserProfile] = None
    error: Optional[str] = None


@dataclass
class CallbackPayload:
    """Tokens and profile decoded from a deep-link callback."""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: Optional[int] = 86400
    scope: Optional[str] = None
    user: Optional[UserProfile] = None
    
    def to_token_record(self, now: int) -> TokenRecord:
        return TokenRecord(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type or "Bearer",
            scope=self.scope,
            expires_at=now + self.expires_in if self.expires_in else None,
            issued_at=now
        )


@dataclass
class TokenValidationResult:
    """Result of validating the stored access token."""
    is_valid: bool
    is_expired: bool
    errors: List[str] = field(default_factory=list)
    expires_in: Optional[int] = None


@dataclass
class ApiResponse:
    """Response returned by the authenticated request client."""
    data: Any
    status: int
    status_text: str
    headers: Dict[str, str] = field(default_factory=dict)
    
    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
