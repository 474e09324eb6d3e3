from phonegate.core.errors import PersistenceError
from phonegate.observability.logging import log
from phonegate.store.profile_repo import persist_profile_blocking

def persist_profile_job(user_id: str, phone_e164: str):
    """
    Background retry of the verified-profile write. Raising lets RQ apply the
    Retry schedule the job was enqueued with.
    """
    log(event="profile_sync_job_start", userId=user_id)
    try:
        profile = persist_profile_blocking(user_id, {"verified": True, "phoneE164": phone_e164})
    except Exception as e:
        log(event="profile_sync_job_exception", userId=user_id, error=str(e)[:200])
        raise

    if not profile.get("verified") or profile.get("phoneE164") != phone_e164:
        log(event="profile_sync_job_readback_mismatch", userId=user_id)
        raise PersistenceError("read-back mismatch after profile write")

    log(event="profile_sync_job_done", userId=user_id)
    return True
