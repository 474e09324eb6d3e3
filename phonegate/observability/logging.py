import json
import time
from phonegate.settings import settings

# Secrets are fully redacted; phone numbers keep their last 4 digits for support lookups.
SECRET_KEYS = {"code", "token", "challengeToken", "handle", "providerHandle"}
PHONE_KEYS = {"phone", "phoneE164", "normalizedPhoneE164", "rawPhoneInput"}

def _redact_value(v):
    if isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _redact_value(val) for k, val in v.items()}
    return v

def mask_phone(v):
    if not isinstance(v, str) or not v:
        return v
    digits = "".join(ch for ch in v if ch.isdigit())
    return f"***{digits[-4:]}" if len(digits) >= 4 else "***"

def _clean(k, v):
    if k in SECRET_KEYS:
        return _redact_value(v)
    if k in PHONE_KEYS:
        return mask_phone(v)
    if isinstance(v, dict):
        return {sk: _clean(sk, sv) for sk, sv in v.items()}
    return v

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    if settings.ENABLE_PII_REDACTION:
        payload.update({k: _clean(k, v) for k, v in fields.items()})
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))
