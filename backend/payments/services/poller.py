from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from core.exceptions import GatewayError, PollTimeout
from payments.services.gateway import PaymentGatewayClient
from payments.services.reconciler import PaymentReconciler
from payments.services.statuses import ReportedStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 20
DEFAULT_MAX_DELAY = 30.0
DEFAULT_ERROR_DELAY = 5.0


@dataclass
class PollState:
    """
    Progress of one polling run.

    ``attempts`` counts every fetch, failed or not. ``backoff_step`` only
    advances on PENDING answers, so network errors do not stretch the
    exponential schedule.
    """

    reference_number: str
    max_attempts: int
    max_delay: float = DEFAULT_MAX_DELAY
    error_delay: float = DEFAULT_ERROR_DELAY
    attempts: int = 0
    backoff_step: int = 0
    last_status: Optional[ReportedStatus] = None
    errors: List[str] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def record_status(self, status: ReportedStatus) -> Optional[float]:
        """Return the delay before the next fetch, or None once the status is terminal."""
        self.attempts += 1
        self.last_status = status
        if status.is_terminal:
            return None
        delay = min(2 ** self.backoff_step, self.max_delay)
        self.backoff_step += 1
        return delay

    def record_error(self, exc: Exception) -> float:
        self.attempts += 1
        self.errors.append(str(exc))
        return self.error_delay


class StatusPoller:
    def __init__(
        self,
        *,
        gateway: PaymentGatewayClient,
        reconciler: PaymentReconciler,
        sleep: Callable[[float], None] = time.sleep,
        max_delay: float = DEFAULT_MAX_DELAY,
        error_delay: float = DEFAULT_ERROR_DELAY,
    ):
        self.gateway = gateway
        self.reconciler = reconciler
        self.sleep = sleep
        self.max_delay = max_delay
        self.error_delay = error_delay

    def refresh_status(self, reference_number: str) -> ReportedStatus:
        """Fetch the gateway status once and reconcile it."""
        raw_status = self.gateway.fetch_status(reference_number)
        self.reconciler.reconcile(reference_number=reference_number, reported_status=raw_status)
        return ReportedStatus.parse(raw_status)

    def poll_until_terminal(self, reference_number: str, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> ReportedStatus:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        state = PollState(
            reference_number=reference_number,
            max_attempts=max_attempts,
            max_delay=self.max_delay,
            error_delay=self.error_delay,
        )
        while not state.exhausted:
            try:
                status = self.refresh_status(reference_number)
            except GatewayError as exc:
                delay = state.record_error(exc)
                logger.warning(
                    "Error checking payment status for %s (attempt %s/%s): %s",
                    reference_number,
                    state.attempts,
                    max_attempts,
                    exc,
                )
            else:
                delay = state.record_status(status)
                if delay is None:
                    logger.info("Payment %s final status: %s", reference_number, status.value)
                    return status
                logger.info(
                    "Payment %s still pending (attempt %s/%s); checking again in %ss",
                    reference_number,
                    state.attempts,
                    max_attempts,
                    delay,
                )

            if not state.exhausted:
                self.sleep(delay)

        logger.warning("Payment status check for %s timed out after %s attempts", reference_number, state.attempts)
        raise PollTimeout(reference_number, state.attempts)
