"""Bulk sign-up and check-in over a logged-in PortalClient.

Activities are processed strictly one at a time in listing order: the gateway
session is not safe for concurrent requests, and sequential processing keeps
log output in order. A throttle hook is awaited before every item; it is the
place to pace requests or to stop early by raising.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable

from secondclass.client import PortalClient
from secondclass.errors import ApplicationError, ProtocolError
from secondclass.logging import get_logger
from secondclass.models import Activity, ActivityStatus

log = get_logger(__name__)

Throttle = Callable[[Activity], Awaitable[None]]

# Joined activities that still accept check-in
CHECK_IN_STATUSES: frozenset[str] = frozenset(
    {
        ActivityStatus.REGISTERING.value,
        ActivityStatus.PENDING_START.value,
        ActivityStatus.IN_PROGRESS.value,
    }
)


def sleep_throttle(seconds: float) -> Throttle:
    """Throttle that pauses a fixed number of seconds before each item."""

    async def _throttle(activity: Activity) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    return _throttle


class ActivityAutomator:
    """Best-effort bulk operations: report what succeeded, log the rest.

    A portal refusal or error page for one activity skips that activity only.
    Listing failures and transport errors abort the run.
    """

    def __init__(self, client: PortalClient, throttle: Throttle | None = None) -> None:
        self.client = client
        self.throttle = throttle or sleep_throttle(client.config.throttle_seconds)

    async def _paced(self, activities: list[Activity]) -> AsyncIterator[Activity]:
        for activity in activities:
            await self.throttle(activity)
            yield activity

    async def sign_all_eligible(self) -> list[Activity]:
        """Sign up for every open activity still registering and not yet joined.

        Returns:
            Activities whose sign-up answered code "1", in listing order.

        Raises:
            ApplicationError: The listing itself failed.
            ProtocolError: The listing came back as the gateway error page.
            NetworkError: Transport failure (already completed sign-ups stay).
        """
        signed: list[Activity] = []
        activities = await self.client.list_activities()

        async for activity in self._paced(activities):
            if activity.is_sign == 1 or activity.status != ActivityStatus.REGISTERING.value:
                continue
            try:
                result = await self.client.sign_up(activity)
            except (ApplicationError, ProtocolError) as e:
                log.warning(
                    "sign_up_failed",
                    activity_id=activity.id,
                    activity=activity.name,
                    error=str(e),
                )
                continue

            log.info(
                "sign_up_answered",
                activity_id=activity.id,
                activity=activity.name,
                message=result.message,
                code=result.code,
            )
            if result.succeeded:
                signed.append(activity)

        log.info("sign_all_finished", listed=len(activities), signed=len(signed))
        return signed

    async def check_in_all_eligible(self) -> list[Activity]:
        """Check in and out of every joined activity that is not fully signed.

        Returns:
            Every activity a check-in/out was attempted for, in listing order.

        Raises:
            ApplicationError: The listing itself failed.
            ProtocolError: The listing came back as the gateway error page.
            NetworkError: Transport failure (already completed check-ins stay).
        """
        processed: list[Activity] = []
        activities = await self.client.list_my_activities()

        async for activity in self._paced(activities):
            if activity.status not in CHECK_IN_STATUSES:
                continue
            try:
                record = await self.client.fetch_sign_record(activity.id)
            except (ApplicationError, ProtocolError) as e:
                log.warning(
                    "sign_record_unavailable",
                    activity_id=activity.id,
                    activity=activity.name,
                    error=str(e),
                )
                continue
            if record.is_sign:
                continue

            try:
                outcome = await self.client.check_in_out(activity)
            except (ApplicationError, ProtocolError, ValueError) as e:
                log.warning(
                    "check_in_out_failed",
                    activity_id=activity.id,
                    activity=activity.name,
                    error=str(e),
                )
                continue

            message = outcome if isinstance(outcome, str) else outcome.get("message")
            log.info(
                "check_in_out_answered",
                activity_id=activity.id,
                activity=activity.name,
                message=message,
            )
            processed.append(activity)

        log.info("check_in_all_finished", listed=len(activities), processed=len(processed))
        return processed
