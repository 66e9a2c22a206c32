"""Admission Controller — gates generation on the user's rolling token quota."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import structlog

from poiesis.config import get_settings
from poiesis.core.entitlements import quota_for
from poiesis.core.errors import QuotaExceeded
from poiesis.core.usage import UsageLedger, get_usage_ledger

logger = structlog.get_logger()


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    quota: int
    used: int


class AdmissionController:
    """Consults the usage ledger before any model call or persistence happens.

    When the ledger read itself fails the controller either allows the request
    (``fail_open=True``) or denies it as if the quota were exhausted.
    """

    def __init__(self, ledger: UsageLedger, fail_open: bool = True) -> None:
        self.ledger = ledger
        self.fail_open = fail_open

    def admit(self, user_id: str, user_class: str) -> AdmissionDecision:
        quota = quota_for(user_class)
        try:
            used = self.ledger.tokens_used_last_24h(user_id)
        except Exception as e:
            logger.warning(
                "admission.ledger_read_failed",
                user_id=user_id,
                fail_open=self.fail_open,
                error=str(e),
            )
            if self.fail_open:
                return AdmissionDecision(allowed=True, quota=quota, used=0)
            return AdmissionDecision(allowed=False, quota=quota, used=quota)

        if used >= quota:
            logger.info("admission.denied", user_id=user_id, used=used, quota=quota)
            return AdmissionDecision(allowed=False, quota=quota, used=used)
        return AdmissionDecision(allowed=True, quota=quota, used=used)

    def require(self, user_id: str, user_class: str) -> AdmissionDecision:
        """Admit or raise QuotaExceeded."""
        decision = self.admit(user_id, user_class)
        if not decision.allowed:
            raise QuotaExceeded(quota=decision.quota, used=decision.used)
        return decision


@lru_cache
def get_admission_controller() -> AdmissionController:
    """Get cached admission controller instance."""
    return AdmissionController(get_usage_ledger(), fail_open=get_settings().admission_fail_open)
