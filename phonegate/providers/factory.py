"""
OTP provider factory
"""
from typing import Optional

from phonegate.observability.logging import log
from phonegate.providers.base import OTPProvider
from phonegate.settings import settings

_provider_instance: Optional[OTPProvider] = None


def get_otp_provider() -> OTPProvider:
    """Return the process-wide provider selected by OTP_PROVIDER."""
    global _provider_instance

    provider_type = (settings.OTP_PROVIDER or "stub").lower()
    if _provider_instance is not None and _provider_instance.name == provider_type:
        return _provider_instance

    if provider_type == "twilio_verify":
        from phonegate.providers.twilio_verify import TwilioVerifyProvider
        _provider_instance = TwilioVerifyProvider()
    elif provider_type == "sms_service":
        from phonegate.providers.sms_service import SmsServiceProvider
        _provider_instance = SmsServiceProvider()
    elif provider_type == "stub":
        from phonegate.providers.stub import StubOTPProvider
        _provider_instance = StubOTPProvider()
    else:
        raise ValueError(
            f"Unknown OTP provider: {provider_type}. Must be one of: twilio_verify, sms_service, stub"
        )

    log(event="otp_provider_selected", provider=provider_type)
    return _provider_instance


def reset_provider() -> None:
    global _provider_instance
    _provider_instance = None
