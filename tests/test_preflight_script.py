import runpy
from pathlib import Path

import pytest
from unittest.mock import patch

from phonegate.providers.factory import reset_provider
from phonegate.settings import settings

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "preflight_check.py"


@pytest.mark.parametrize("mode,exit_code", [("allowlist", 0), ("bogus", 1)])
def test_preflight_check(mode, exit_code):
    reset_provider()
    with patch.object(settings, "OTP_PROVIDER", "stub"), patch.object(settings, "FAIL_OPEN_MODE", mode):
        with pytest.raises(SystemExit) as ei:
            runpy.run_path(str(SCRIPT), run_name="__main__")
    reset_provider()
    assert ei.value.code == exit_code
