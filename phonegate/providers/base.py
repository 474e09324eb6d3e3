"""
Abstract OTP provider interface
"""
from abc import ABC, abstractmethod
from typing import Any, Optional


class OTPProvider(ABC):
    """
    Port for an SMS/OTP backend.

    Implementations raise DispatchError / ConfirmError with a code from
    phonegate.core.errors. Anything else they raise reaches the policy engine
    with code "unknown", which fails open only when FAIL_OPEN_MODE=broad.
    """

    name: str = "otp"

    @abstractmethod
    async def dispatch(self, phone_e164: str, challenge_token: Optional[str]) -> str:
        """
        Send a verification code.

        Args:
            phone_e164: Normalized phone number in E.164 format
            challenge_token: Single-use human-verification token

        Returns:
            Opaque confirmation handle
        """
        pass

    @abstractmethod
    async def confirm(self, handle: str, code: str) -> Any:
        """
        Check a user-entered code against a handle returned by dispatch().

        Returns:
            Provider result (truthy) on success; failures raise ConfirmError
        """
        pass
