import pytest
from unittest.mock import patch

from phonegate.core import errors
from phonegate.core import policy
from phonegate.core.errors import ConfirmError
from phonegate.settings import settings


def test_captcha_failure_requests_new_challenge():
    d = policy.decide(errors.CAPTCHA_FAILED)
    assert d.action == policy.REQUEST_NEW_CHALLENGE
    assert d.message


@pytest.mark.parametrize("code", [errors.INVALID_PHONE, errors.INVALID_SESSION, errors.CHALLENGE_UNAVAILABLE])
def test_never_bypass_codes_fail_closed_even_in_broad_mode(code):
    with patch.object(settings, "FAIL_OPEN_MODE", "broad"):
        d = policy.decide(code)
    assert d.action == policy.FAIL_CLOSED


@pytest.mark.parametrize("code", [errors.PROVIDER_UNAVAILABLE, errors.TIMEOUT, errors.NETWORK_ERROR])
def test_outage_codes_fail_open(code):
    d = policy.decide(code)
    assert d.action == policy.FAIL_OPEN
    assert d.rule == "listed"


def test_invalid_code_retries_until_attempt_cap():
    assert policy.decide(errors.INVALID_CODE, attempt_count=1).action == policy.RETRY_SAME_STEP
    assert policy.decide(errors.INVALID_CODE, attempt_count=4).action == policy.RETRY_SAME_STEP

    d = policy.decide(errors.INVALID_CODE, attempt_count=5)
    assert d.action == policy.REQUEST_NEW_CODE
    assert d.code == errors.TOO_MANY_REQUESTS


@pytest.mark.parametrize("code", [errors.CODE_EXPIRED, errors.SESSION_EXPIRED, errors.TOO_MANY_REQUESTS])
def test_dead_code_requests_new_code(code):
    assert policy.decide(code).action == policy.REQUEST_NEW_CODE


def test_unlisted_code_depends_on_fail_open_mode():
    with patch.object(settings, "FAIL_OPEN_MODE", "allowlist"):
        assert policy.decide("twilio-60410").action == policy.FAIL_CLOSED
    with patch.object(settings, "FAIL_OPEN_MODE", "broad"):
        d = policy.decide("twilio-60410")
        assert d.action == policy.FAIL_OPEN
        assert d.rule == "broad"


def test_error_code_reads_exception_code():
    assert policy.error_code(ConfirmError("x", code=errors.CODE_EXPIRED)) == errors.CODE_EXPIRED
    assert policy.error_code(RuntimeError("boom")) == "unknown"
