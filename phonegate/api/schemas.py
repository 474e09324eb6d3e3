from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ChallengeRequest(BaseModel):
    token: Optional[str] = None
    # Widget-side failure reported by the client instead of a token
    error: Optional[str] = None


class SendCodeRequest(BaseModel):
    phone: Optional[str] = None
    region: Optional[str] = Field(default=None, min_length=2, max_length=2)


class ConfirmRequest(BaseModel):
    code: str


class VerificationStatus(BaseModel):
    userId: str
    step: str
    phoneE164: Optional[str] = None
    attemptCount: int = 0
    expiresAt: Optional[int] = None
    expiresInSec: int = 0
    lastError: Optional[str] = None
    message: Optional[str] = None
    verified: bool = False
    # VERIFIED or FAILED: nothing left to wait for
    terminal: bool = False
    verifiedVia: Optional[str] = None
    canResend: bool = False
    profileSync: Optional[str] = None


class AdminSnapshot(BaseModel):
    userId: str
    live: Optional[Dict[str, Any]] = None
    stored: Optional[Dict[str, Any]] = None


class FailOpenEntry(BaseModel):
    userId: str
    code: str


class MetricsSnapshot(BaseModel):
    outcomes: Dict[str, int] = Field(default_factory=dict)
    policy: Dict[str, int] = Field(default_factory=dict)
    fail_open_rate: float = 0.0
    recent_fail_open: List[FailOpenEntry] = Field(default_factory=list)
    profile_sync_retries: int = 0
