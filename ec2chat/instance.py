"""
EC2 instance lifecycle: status lookup, password-gated start/stop and the
status polling policy.
"""
import asyncio
import hmac
import logging
from typing import Any, Awaitable, Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ec2chat.errors import ErrorKind, Result
from ec2chat.models import InstanceState, InstanceStatus, PowerAction, PowerResult

logger = logging.getLogger(__name__)

# States in which the status indicator stops spinning.
STABLE_STATES = frozenset({InstanceState.RUNNING, InstanceState.STOPPED})

INVALID_PASSWORD = "Invalid password"
ACTION_FAILED = "Failed to perform action"


def build_ec2_client(
    region_name: str,
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
):
    """Create a boto3 EC2 client, falling back to the default credential chain."""
    import boto3

    client_kwargs: dict[str, Any] = {
        "service_name": "ec2",
        "region_name": region_name,
    }
    if aws_access_key_id and aws_secret_access_key:
        client_kwargs["aws_access_key_id"] = aws_access_key_id
        client_kwargs["aws_secret_access_key"] = aws_secret_access_key

    return boto3.client(**client_kwargs)


class InstanceMonitor:
    """Tracks and mutates the power state of a single EC2 instance.

    The boto3 client is blocking, so every call runs in a worker thread.
    """

    def __init__(self, ec2_client, instance_id: Optional[str], admin_password: Optional[str]):
        self._ec2 = ec2_client
        self._instance_id = instance_id
        self._admin_password = admin_password

    def _describe_sync(self) -> Result[InstanceStatus]:
        if not self._instance_id:
            return Result.failure(ErrorKind.PRECONDITION, "EC2_INSTANCE_ID is not defined")

        try:
            response = self._ec2.describe_instances(InstanceIds=[self._instance_id])
        except (BotoCoreError, ClientError) as e:
            logger.warning("describe_instances failed for %s: %s", self._instance_id, e)
            return Result.failure(ErrorKind.UPSTREAM, str(e))

        reservations = response.get("Reservations") or []
        instances = (reservations[0].get("Instances") or []) if reservations else []
        if not instances:
            logger.info("No instance found for %s", self._instance_id)
            return Result.success(InstanceStatus.unknown())

        instance = instances[0]
        return Result.success(InstanceStatus(
            state=InstanceState.parse((instance.get("State") or {}).get("Name")),
            public_address=instance.get("PublicIpAddress") or None,
        ))

    async def describe(self) -> Result[InstanceStatus]:
        """Single best-effort describe call, without a fallback applied."""
        try:
            return await asyncio.to_thread(self._describe_sync)
        except Exception as e:
            logger.exception("Unexpected error describing instance")
            return Result.failure(ErrorKind.UPSTREAM, str(e))

    async def get_status(self) -> InstanceStatus:
        """Current status; any failure collapses to ``unknown``."""
        result = await self.describe()
        return result.unwrap_or(InstanceStatus.unknown())

    def _check_password(self, supplied: str) -> bool:
        if not self._admin_password or supplied is None:
            return False
        return hmac.compare_digest(supplied.encode("utf-8"), self._admin_password.encode("utf-8"))

    def _power_sync(self, action: PowerAction) -> None:
        if not self._instance_id:
            raise ValueError("EC2_INSTANCE_ID is not defined")
        if action == PowerAction.START:
            self._ec2.start_instances(InstanceIds=[self._instance_id])
        else:
            self._ec2.stop_instances(InstanceIds=[self._instance_id])

    async def set_power(self, action: PowerAction, supplied_password: str) -> PowerResult:
        """Start or stop the instance if the password matches."""
        if not self._check_password(supplied_password):
            logger.warning("Rejected %s request: invalid password", action.value)
            return PowerResult(success=False, error=INVALID_PASSWORD)

        try:
            await asyncio.to_thread(self._power_sync, action)
        except Exception:
            logger.exception("Failed to %s instance %s", action.value, self._instance_id)
            return PowerResult(success=False, error=ACTION_FAILED)

        logger.info("Requested %s for instance %s", action.value, self._instance_id)
        return PowerResult(success=True)

    async def toggle(self, supplied_password: str) -> PowerResult:
        """Stop a running instance, start anything else."""
        if not self._check_password(supplied_password):
            return PowerResult(success=False, error=INVALID_PASSWORD)

        status = await self.get_status()
        action = PowerAction.STOP if status.state == InstanceState.RUNNING else PowerAction.START
        return await self.set_power(action, supplied_password)


def is_transitional(state: InstanceState) -> bool:
    return state not in STABLE_STATES


class StatusPoller:
    """Fixed-interval status polling with a liveness indicator.

    ``polling`` is only a display hint: it is on while the instance is in a
    transitional state. Each tick is a single independent ``get_status`` call
    with no backoff and no retry.
    """

    def __init__(self, monitor: InstanceMonitor, interval: float = 5.0):
        self.monitor = monitor
        self.interval = interval
        self.polling = False
        self.last_status: Optional[InstanceStatus] = None

    def observe(self, status: InstanceStatus) -> bool:
        self.last_status = status
        self.polling = is_transitional(status.state)
        return self.polling

    def mark_active(self) -> None:
        """Called after a successful power request, before the state changes."""
        self.polling = True

    async def tick(self) -> InstanceStatus:
        status = await self.monitor.get_status()
        self.observe(status)
        return status

    async def run(
        self,
        stop: asyncio.Event,
        on_status: Optional[Callable[[InstanceStatus, bool], Awaitable[None]]] = None,
    ) -> None:
        """Poll until *stop* is set."""
        logger.info("Status poller started (interval=%ss)", self.interval)
        while not stop.is_set():
            status = await self.tick()
            if on_status is not None:
                await on_status(status, self.polling)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Status poller stopped")
