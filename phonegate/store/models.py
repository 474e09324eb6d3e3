from dataclasses import dataclass, field
from typing import List, Optional

from phonegate.core import state_machine as sm

# Oldest consumed handles are forgotten past this many
MAX_CONSUMED_HANDLES = 20


@dataclass
class UserSession:
    """Read-only view of the authenticated caller."""
    userId: str
    phoneOnFile: Optional[str] = None
    phoneVerified: bool = False


@dataclass
class VerificationSession:
    # Identity
    userId: str = ""

    # Phone: raw input vs validated E.164 (set once per flow)
    rawPhoneInput: Optional[str] = None
    normalizedPhoneE164: Optional[str] = None

    step: str = sm.IDLE

    # Single-use challenge token; cleared after one dispatch attempt
    challengeToken: Optional[str] = None

    # Provider confirmation handle; valid only during AWAITING_CODE/CONFIRMING
    providerHandle: Optional[str] = None
    consumedHandles: List[str] = field(default_factory=list)
    # Set after an ambiguous confirm timeout: handle may already be spent
    handleSuspect: bool = False

    attemptCount: int = 0
    lastError: Optional[str] = None
    lastErrorMessage: Optional[str] = None
    expiresAt: Optional[int] = None  # epoch ms, code validity

    # Re-entrancy guards (owned by Dispatcher / Confirmer)
    dispatchInFlight: bool = False
    confirmInFlight: bool = False

    # Bumped on every reset; async results from older epochs are discarded
    epoch: int = 0

    # Audit
    verifiedVia: Optional[str] = None  # code | fail_open | already_verified
    failOpenReason: Optional[str] = None

    createdAtMs: int = 0
    lastUpdatedAtMs: int = 0

    def is_handle_consumed(self, handle: Optional[str]) -> bool:
        return bool(handle) and handle in self.consumedHandles

    def consume_handle(self) -> None:
        if self.providerHandle and self.providerHandle not in self.consumedHandles:
            self.consumedHandles.append(self.providerHandle)
            del self.consumedHandles[:-MAX_CONSUMED_HANDLES]
        self.providerHandle = None
        self.handleSuspect = False

    def reset(self) -> None:
        """Back to IDLE; keeps identity, the consumed-handle ledger and audit fields."""
        self.consume_handle()
        self.rawPhoneInput = None
        self.normalizedPhoneE164 = None
        self.step = sm.IDLE
        self.challengeToken = None
        self.attemptCount = 0
        self.expiresAt = None
        self.dispatchInFlight = False
        self.confirmInFlight = False
        self.epoch += 1
