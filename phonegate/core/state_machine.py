# Verification step constants

# No flow in progress (also the reset target on close/restart/code expiry)
IDLE = "IDLE"

# Challenge widget requested, waiting for the human check
CHALLENGE_PENDING = "CHALLENGE_PENDING"

# Challenge token held, phone entry allowed
CHALLENGE_SOLVED = "CHALLENGE_SOLVED"

# Dispatch call in flight
DISPATCHING = "DISPATCHING"

# Provider handle held, waiting for the user's 6-digit code
AWAITING_CODE = "AWAITING_CODE"

# Confirm call in flight
CONFIRMING = "CONFIRMING"

# Terminal: gate open
VERIFIED = "VERIFIED"

# Terminal for the attempt: user must restart
FAILED = "FAILED"

TERMINAL = (VERIFIED, FAILED)
PENDING = (DISPATCHING, CONFIRMING)


# Challenge widget states

UNRENDERED = "UNRENDERED"
RENDERING = "RENDERING"
SOLVED = "SOLVED"
EXPIRED = "EXPIRED"
ERROR = "ERROR"
