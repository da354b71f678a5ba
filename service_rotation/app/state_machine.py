"""
Rotation state machine.

Each client has exactly one cycle: ``Scheduled -> Warned -> Rotated`` and
then a fresh ``Scheduled`` cycle, or ``Failed`` when the provider refuses
to regenerate the secret. Warn and rotate triggers are always registered
as a pair.

Trigger delivery is at-least-once. Every firing registered here carries
the ``rotate_at`` of its cycle; a firing for an older cycle is stale and a
firing whose ``rotate_at`` already completed never regenerates again. A bare
``{action, client_id}`` firing binds to the live cycle only once that
cycle's ``rotate_at`` has been reached.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from shared.errors import (
    ProviderCallError,
    TriggerNotFoundError,
    TriggerRegistrationError,
)
from shared.logging import get_logger, set_client_context
from shared.metrics import MetricsCollector

from . import notifications
from .adapters import CredentialIssuer, Notifier, TriggerRegistry
from .models import ClientCredential, ClientMetadata, CycleState, RotationCycle, TriggerAction
from .schedule import compute_cycle, parse_instant, rotation_rule_name, truncate_to_minute, warning_rule_name


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RotationStateMachine:
    """Drives per-client rotation cycles from trigger deliveries."""

    def __init__(
        self,
        issuer: CredentialIssuer,
        triggers: TriggerRegistry,
        notifier: Notifier,
        *,
        rotation_period: timedelta = timedelta(days=90),
        grace_period: timedelta = timedelta(days=14),
        environment: str = "dev",
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        if grace_period >= rotation_period:
            raise ValueError("grace_period must be shorter than rotation_period")
        self.issuer = issuer
        self.triggers = triggers
        self.notifier = notifier
        self.rotation_period = rotation_period
        self.grace_period = grace_period
        self.environment = environment
        self._clock = clock
        self.metrics = metrics
        self.logger = get_logger("rotation.state_machine")

        self._credentials: Dict[str, ClientCredential] = {}
        self._cycles: Dict[str, RotationCycle] = {}
        self._completed: Dict[str, datetime] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ── Queries ────────────────────────────────────────────────────

    def get_cycle(self, client_id: str) -> Optional[RotationCycle]:
        return self._cycles.get(client_id)

    def get_credential(self, client_id: str) -> Optional[ClientCredential]:
        return self._credentials.get(client_id)

    def _lock(self, client_id: str) -> asyncio.Lock:
        # Serializes deliveries for one client; clients never share a lock
        lock = self._locks.get(client_id)
        if lock is None:
            lock = self._locks[client_id] = asyncio.Lock()
        return lock

    def _is_known(self, client_id: str, action: str) -> bool:
        # Triggers for unscheduled clients never allocate a lock
        if client_id in self._cycles:
            return True
        self.logger.info("Trigger for unknown client ignored", action=action, client_id=client_id)
        self._record(action, "ignored")
        return False

    # ── Transitions ────────────────────────────────────────────────

    async def provision(
        self,
        client_id: str,
        *,
        rotation_period: Optional[timedelta] = None,
        grace_period: Optional[timedelta] = None,
    ) -> RotationCycle:
        """Start rotating ``client_id``. Re-delivery returns the live cycle untouched."""
        async with self._lock(client_id):
            set_client_context(client_id)
            existing = self._cycles.get(client_id)
            if existing is not None and existing.is_live:
                self.logger.info("Client already has a live cycle", client_id=client_id,
                                 state=existing.state.value)
                return existing

            now = self._clock()
            credential = self._credentials.get(client_id)
            if credential is None or rotation_period or grace_period:
                credential = ClientCredential(
                    client_id=client_id,
                    rotation_period=rotation_period or self.rotation_period,
                    grace_period=grace_period or self.grace_period,
                    created_at=credential.created_at if credential else now,
                )
                self._credentials[client_id] = credential

            if existing is not None:
                # Remediating a failed cycle: its triggers are obsolete
                await self._cancel_pair(existing)

            cycle = await self._schedule(credential, now)

            metadata = await self._describe_for_notice(client_id)
            await self._notify(*notifications.provisioned(metadata, credential, cycle.rotate_at, self.environment))
            self._record("schedule_rotation", "ok")
            return cycle

    async def on_warn_trigger(self, client_id: str, rotate_at: Optional[datetime] = None) -> Optional[RotationCycle]:
        """Send the advance warning. Only reads and notifies; safe to re-fire."""
        if not self._is_known(client_id, "send_warning"):
            return None
        async with self._lock(client_id):
            set_client_context(client_id)
            cycle = self._current_cycle_for(client_id, rotate_at, action="send_warning")
            if cycle is None or not cycle.is_live:
                self._record("send_warning", "ignored")
                return None

            metadata = await self._call_issuer("describe", self.issuer.describe(client_id))
            now = self._clock()
            await self._notify(*notifications.warning(metadata, now, cycle.rotate_at, self.environment))

            if cycle.state == CycleState.SCHEDULED:
                cycle.state = CycleState.WARNED
            self.logger.info("Rotation warning sent", client_id=client_id,
                             rotate_at=cycle.rotate_at.isoformat())
            self._record("send_warning", "ok")
            return cycle

    async def on_rotate_trigger(self, client_id: str, rotate_at: Optional[datetime] = None) -> Optional[RotationCycle]:
        """Regenerate the secret and roll over to the next cycle.

        Returns the new cycle, or ``None`` when the firing was a no-op.
        Provider failures mark the cycle ``Failed``, raise an alert and
        propagate as ``ProviderCallError``.
        """
        if not self._is_known(client_id, "rotate"):
            return None
        async with self._lock(client_id):
            set_client_context(client_id)
            cycle = self._cycles.get(client_id)
            if cycle is None:
                self.logger.info("Rotate trigger for unknown client ignored", client_id=client_id)
                self._record("rotate", "ignored")
                return None

            firing = rotate_at
            if firing is None:
                if truncate_to_minute(self._clock()) < cycle.rotate_at:
                    self.logger.info("Rotate trigger before rotation time ignored", client_id=client_id,
                                     current=cycle.rotate_at.isoformat())
                    self._record("rotate", "early")
                    return None
                firing = cycle.rotate_at

            if self._completed.get(client_id) == firing:
                if cycle.state == CycleState.ROTATED and cycle.rotate_at == firing:
                    # Secret already rotated but the next pair never got registered
                    self.logger.warning("Resuming reschedule after completed rotation", client_id=client_id)
                    next_cycle = await self._schedule(self._credentials[client_id], self._clock())
                    self._record("rotate", "resumed")
                    return next_cycle
                self.logger.info("Duplicate rotate delivery ignored", client_id=client_id,
                                 rotate_at=firing.isoformat())
                self._record("rotate", "duplicate")
                return None
            if firing != cycle.rotate_at:
                self.logger.info("Stale rotate trigger ignored", client_id=client_id,
                                 firing=firing.isoformat(), current=cycle.rotate_at.isoformat())
                self._record("rotate", "stale")
                return None

            try:
                metadata = await self._call_issuer("describe", self.issuer.describe(client_id))
                new_secret = await self._call_issuer("regenerate_secret", self.issuer.regenerate_secret(client_id))
            except ProviderCallError as exc:
                cycle.state = CycleState.FAILED
                cycle.failure = exc.message
                self.logger.error("Secret rotation failed", client_id=client_id, error=exc.message)
                await self._notify(*notifications.rotation_failed(client_id, exc.message, self.environment))
                self._record("rotate", "failed")
                raise

            now = self._clock()
            credential = self._credentials[client_id]
            cycle.state = CycleState.ROTATED
            cycle.rotated_at = now
            cycle.failure = None
            self._completed[client_id] = cycle.rotate_at

            _, next_rotate_at = compute_cycle(now, credential.rotation_period, credential.grace_period)
            await self._notify(*notifications.rotated(metadata, new_secret, now, next_rotate_at, self.environment))

            await self._cancel_pair(cycle)
            next_cycle = await self._schedule(credential, now)
            self.logger.info("Secret rotated", client_id=client_id,
                             next_rotate_at=next_cycle.rotate_at.isoformat())
            self._record("rotate", "ok")
            return next_cycle

    async def deprovision(self, client_id: str) -> bool:
        """Stop rotating ``client_id`` and delete its pending triggers."""
        if client_id not in self._cycles:
            return False
        async with self._lock(client_id):
            cycle = self._cycles.pop(client_id, None)
            self._credentials.pop(client_id, None)
            self._completed.pop(client_id, None)
            self._locks.pop(client_id, None)
            if cycle is None:
                return False
            for rule_id in (cycle.warn_rule_id, cycle.rotate_rule_id):
                if rule_id is None:
                    continue
                try:
                    await self.triggers.cancel(rule_id)
                except TriggerNotFoundError:
                    self.logger.debug("Trigger already gone", rule_id=rule_id)
            self.logger.info("Client deprovisioned", client_id=client_id)
            return True

    # ── Dispatch ───────────────────────────────────────────────────

    async def handle_event(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        """Route one trigger delivery. Unknown actions are logged and ignored."""
        action = event.get("action")
        client_id = event.get("client_id")
        result: Dict[str, Any] = {"action": action, "client_id": client_id, "status": "ignored"}

        if not client_id:
            self.logger.warning("Trigger event without client_id ignored", action=action)
            return result

        try:
            rotate_at = parse_instant(event.get("rotate_at"))
        except ValueError:
            self.logger.warning("Trigger event with unparseable rotate_at ignored",
                                action=action, rotate_at=event.get("rotate_at"))
            return result

        if action == TriggerAction.SCHEDULE_ROTATION.value:
            cycle = await self.provision(client_id)
        elif action == TriggerAction.SEND_WARNING.value:
            cycle = await self.on_warn_trigger(client_id, rotate_at)
        elif action == TriggerAction.ROTATE.value:
            cycle = await self.on_rotate_trigger(client_id, rotate_at)
        else:
            self.logger.warning("Unknown trigger action ignored", action=action, client_id=client_id)
            self._record(str(action), "unknown")
            return result

        if cycle is not None:
            result["status"] = "ok"
            result["cycle"] = cycle.to_dict()
        return result

    # ── Internals ──────────────────────────────────────────────────

    def _current_cycle_for(self, client_id: str, rotate_at: Optional[datetime], action: str) -> Optional[RotationCycle]:
        cycle = self._cycles.get(client_id)
        if cycle is None:
            self.logger.info("Trigger for unknown client ignored", action=action, client_id=client_id)
            return None
        if rotate_at is not None and rotate_at != cycle.rotate_at:
            self.logger.info("Stale trigger ignored", action=action, client_id=client_id,
                             firing=rotate_at.isoformat(), current=cycle.rotate_at.isoformat())
            return None
        return cycle

    async def _schedule(self, credential: ClientCredential, now: datetime) -> RotationCycle:
        """Register the warn/rotate pair for a new cycle starting ``now``."""
        client_id = credential.client_id
        warn_at, rotate_at = compute_cycle(now, credential.rotation_period, credential.grace_period)
        base_payload = {"client_id": client_id, "rotate_at": rotate_at.isoformat()}

        warn_rule_id = await self._register(
            warn_at,
            {"action": TriggerAction.SEND_WARNING.value, **base_payload},
            warning_rule_name(self.environment, client_id),
        )
        try:
            rotate_rule_id = await self._register(
                rotate_at,
                {"action": TriggerAction.ROTATE.value, **base_payload},
                rotation_rule_name(self.environment, client_id),
            )
        except TriggerRegistrationError:
            # A warn trigger without its rotate partner must not survive
            await self._cancel_quietly(warn_rule_id)
            raise

        cycle = RotationCycle(
            client_id=client_id,
            warn_at=warn_at,
            rotate_at=rotate_at,
            warn_rule_id=warn_rule_id,
            rotate_rule_id=rotate_rule_id,
        )
        self._cycles[client_id] = cycle
        self.logger.info("Rotation scheduled", client_id=client_id,
                         warn_at=warn_at.isoformat(), rotate_at=rotate_at.isoformat())
        return cycle

    async def _register(self, when: datetime, payload: Dict[str, Any], name: str) -> str:
        try:
            return await self.triggers.register_at(when, payload, name=name)
        except TriggerRegistrationError:
            raise
        except Exception as exc:
            raise TriggerRegistrationError(details={"rule": name, "error": str(exc)}) from exc

    async def _cancel_pair(self, cycle: RotationCycle) -> None:
        for rule_id in (cycle.warn_rule_id, cycle.rotate_rule_id):
            if rule_id is not None:
                await self._cancel_quietly(rule_id)

    async def _cancel_quietly(self, rule_id: str) -> None:
        # A leftover trigger is redundant once its cycle has moved on
        try:
            await self.triggers.cancel(rule_id)
        except Exception as exc:
            self.logger.warning("Could not delete trigger", rule_id=rule_id, error=str(exc))

    async def _call_issuer(self, operation: str, call):
        try:
            return await call
        except ProviderCallError:
            raise
        except Exception as exc:
            raise ProviderCallError(operation, str(exc)) from exc

    async def _describe_for_notice(self, client_id: str) -> ClientMetadata:
        try:
            return await self._call_issuer("describe", self.issuer.describe(client_id))
        except ProviderCallError as exc:
            self.logger.warning("Could not describe client for notification", client_id=client_id,
                                error=exc.message)
            return ClientMetadata(client_id=client_id, client_name=client_id)

    async def _notify(self, subject: str, body: str) -> None:
        try:
            await self.notifier.send(f"[{self.environment.upper()}] {subject}", body)
        except Exception as exc:
            self.logger.error("Notification delivery failed", subject=subject, error=str(exc))

    def _record(self, action: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("rotation_events_total", action=action, status=status)
