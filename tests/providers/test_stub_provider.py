import pytest

from phonegate.core import errors
from phonegate.core.errors import ConfirmError, DispatchError
from phonegate.providers.stub import StubOTPProvider


@pytest.mark.asyncio
async def test_stub_round_trip_accepts_fixed_code():
    p = StubOTPProvider(allowlist=[])
    handle = await p.dispatch("+15551234567", "tok")
    assert handle.startswith("stub-")

    result = await p.confirm(handle, StubOTPProvider.STUB_CODE)
    assert result["status"] == "approved"

    # Handle is spent
    with pytest.raises(ConfirmError) as ei:
        await p.confirm(handle, StubOTPProvider.STUB_CODE)
    assert ei.value.code == errors.SESSION_EXPIRED


@pytest.mark.asyncio
async def test_stub_requires_challenge_token():
    with pytest.raises(DispatchError) as ei:
        await StubOTPProvider(allowlist=[]).dispatch("+15551234567", None)
    assert ei.value.code == errors.CAPTCHA_FAILED


@pytest.mark.asyncio
async def test_stub_allowlist_rejects_other_numbers():
    p = StubOTPProvider(allowlist=["+15550000000"])
    with pytest.raises(DispatchError) as ei:
        await p.dispatch("+15551234567", "tok")
    assert ei.value.code == errors.INVALID_PHONE


@pytest.mark.asyncio
async def test_stub_wrong_code_is_invalid():
    p = StubOTPProvider(allowlist=[])
    handle = await p.dispatch("+15551234567", "tok")
    with pytest.raises(ConfirmError) as ei:
        await p.confirm(handle, "123456")
    assert ei.value.code == errors.INVALID_CODE
