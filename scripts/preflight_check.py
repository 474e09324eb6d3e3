#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Set dummy env vars to avoid KeyErrors during config load if any
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    import phonegate.main
    print("Import phonegate.main: OK")

    from phonegate.providers.factory import get_otp_provider
    provider = get_otp_provider()
    print(f"OTP provider '{provider.name}': OK")

    from phonegate.settings import settings
    if settings.FAIL_OPEN_MODE not in ("allowlist", "broad"):
        raise ValueError(f"FAIL_OPEN_MODE must be allowlist or broad, got {settings.FAIL_OPEN_MODE!r}")
    print(f"FAIL_OPEN_MODE={settings.FAIL_OPEN_MODE}: OK")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
