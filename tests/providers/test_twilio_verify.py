import pytest
from unittest.mock import MagicMock, patch

from twilio.base.exceptions import TwilioRestException

from phonegate.core import errors
from phonegate.core.errors import ConfirmError, DispatchError
from phonegate.providers.twilio_verify import TwilioVerifyProvider
from phonegate.settings import settings


class AllowAll:
    async def verify(self, token):
        return True


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def provider(client):
    with patch.object(settings, "TWILIO_VERIFY_SERVICE_SID", "VA123"):
        return TwilioVerifyProvider(captcha=AllowAll(), client=client)


def _service(client):
    return client.verify.v2.services.return_value


def test_missing_service_sid_rejected(client):
    with patch.object(settings, "TWILIO_VERIFY_SERVICE_SID", ""):
        with pytest.raises(ValueError):
            TwilioVerifyProvider(captcha=AllowAll(), client=client)


@pytest.mark.asyncio
async def test_dispatch_returns_verification_sid(provider, client):
    _service(client).verifications.create.return_value = MagicMock(status="pending", sid="VE1")

    handle = await provider.dispatch("+15551234567", "tok")

    assert handle == "VE1"
    client.verify.v2.services.assert_called_with("VA123")
    _service(client).verifications.create.assert_called_once_with(to="+15551234567", channel="sms")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "twilio_code,status,mapped",
    [
        (60200, 400, errors.INVALID_PHONE),
        (60203, 429, errors.TOO_MANY_REQUESTS),
        (None, 503, errors.PROVIDER_UNAVAILABLE),
        (60410, 403, "twilio-60410"),
    ],
)
async def test_dispatch_error_mapping(provider, client, twilio_code, status, mapped):
    _service(client).verifications.create.side_effect = TwilioRestException(status, "uri", msg="err", code=twilio_code)
    with pytest.raises(DispatchError) as ei:
        await provider.dispatch("+15551234567", "tok")
    assert ei.value.code == mapped


@pytest.mark.asyncio
async def test_dispatch_transport_failure_is_network_error(provider, client):
    _service(client).verifications.create.side_effect = ConnectionError("reset")
    with pytest.raises(DispatchError) as ei:
        await provider.dispatch("+15551234567", "tok")
    assert ei.value.code == errors.NETWORK_ERROR


@pytest.mark.asyncio
async def test_confirm_statuses(provider, client):
    checks = _service(client).verification_checks

    checks.create.return_value = MagicMock(status="approved", sid="VE1")
    assert (await provider.confirm("VE1", "123456"))["status"] == "approved"
    checks.create.assert_called_with(verification_sid="VE1", code="123456")

    checks.create.return_value = MagicMock(status="pending")
    with pytest.raises(ConfirmError) as ei:
        await provider.confirm("VE1", "000000")
    assert ei.value.code == errors.INVALID_CODE

    checks.create.return_value = MagicMock(status="expired")
    with pytest.raises(ConfirmError) as ei:
        await provider.confirm("VE1", "123456")
    assert ei.value.code == errors.CODE_EXPIRED


@pytest.mark.asyncio
async def test_confirm_not_found_means_expired(provider, client):
    _service(client).verification_checks.create.side_effect = TwilioRestException(404, "uri", msg="gone", code=20404)
    with pytest.raises(ConfirmError) as ei:
        await provider.confirm("VE1", "123456")
    assert ei.value.code == errors.CODE_EXPIRED
