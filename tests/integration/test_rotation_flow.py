"""
Integration tests for the credential rotation lifecycle.

A small scheduler loop fires whatever the trigger registry says is due,
the way the external scheduling facility would.
"""

from datetime import datetime, timedelta, timezone

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_rotation.app.adapters import InMemoryCredentialIssuer, InMemoryNotifier, InMemoryTriggerRegistry
from service_rotation.app.models import CycleState
from service_rotation.app.state_machine import RotationStateMachine

UTC = timezone.utc


class SimulatedScheduler:
    """Advances time hour by hour and delivers due triggers."""

    def __init__(self, machine: RotationStateMachine, registry: InMemoryTriggerRegistry, start: datetime):
        self.machine = machine
        self.registry = registry
        self.now = start
        self.delivered = []
        self._fired = set()

    def clock(self) -> datetime:
        return self.now

    async def run_until(self, end: datetime, redeliver: bool = False):
        while self.now < end:
            self.now += timedelta(hours=1)
            for rule in self.registry.due(self.now):
                if (rule.rule_id, rule.fire_at) in self._fired:
                    continue
                self._fired.add((rule.rule_id, rule.fire_at))
                payload = dict(rule.payload)
                self.delivered.append((self.now, payload["action"]))
                await self.machine.handle_event(payload)
                if redeliver:
                    await self.machine.handle_event(payload)


class TestRotationFlow:
    """Integration tests for the warn, rotate, reschedule loop."""

    @pytest.fixture
    def issuer(self):
        issuer = InMemoryCredentialIssuer()
        issuer.add_client("client-abc", "orders-batch")
        return issuer

    @pytest.fixture
    def registry(self):
        return InMemoryTriggerRegistry()

    @pytest.fixture
    def notifier(self):
        return InMemoryNotifier()

    @pytest.fixture
    def scheduler(self, issuer, registry, notifier):
        scheduler = SimulatedScheduler(None, registry, datetime(2026, 1, 1, 9, 0, tzinfo=UTC))
        scheduler.machine = RotationStateMachine(
            issuer, registry, notifier, environment="prod", clock=scheduler.clock
        )
        return scheduler

    @pytest.mark.asyncio
    async def test_two_full_cycles(self, scheduler, issuer, registry, notifier):
        """Test provisioning followed by two warn/rotate rounds."""
        original_secret = issuer.current_secret("client-abc")
        await scheduler.machine.handle_event({"action": "schedule_rotation", "client_id": "client-abc"})

        await scheduler.run_until(datetime(2026, 7, 15, tzinfo=UTC))

        assert [action for _, action in scheduler.delivered] == [
            "send_warning", "rotate", "send_warning", "rotate",
        ]
        fired_days = [(when - datetime(2026, 1, 1, 9, 0, tzinfo=UTC)).days for when, _ in scheduler.delivered]
        assert fired_days == [76, 90, 166, 180]

        assert issuer.regenerate_calls == 2
        assert issuer.current_secret("client-abc") != original_secret
        assert len(registry.rules()) == 2
        assert scheduler.machine.get_cycle("client-abc").state == CycleState.SCHEDULED

        assert notifier.subjects() == [
            "[PROD] New Client Provisioned: orders-batch",
            "[PROD] Credential Rotation Warning: orders-batch",
            "[PROD] Credentials Rotated: orders-batch",
            "[PROD] Credential Rotation Warning: orders-batch",
            "[PROD] Credentials Rotated: orders-batch",
        ]
        final_body = notifier.messages[-1][1]
        assert f"Client Secret: {issuer.current_secret('client-abc')}" in final_body

    @pytest.mark.asyncio
    async def test_at_least_once_delivery(self, scheduler, issuer, notifier):
        """Test every trigger delivered twice still rotates once per cycle."""
        await scheduler.machine.handle_event({"action": "schedule_rotation", "client_id": "client-abc"})

        await scheduler.run_until(datetime(2026, 4, 2, tzinfo=UTC), redeliver=True)

        assert issuer.regenerate_calls == 1
        assert sum("Credentials Rotated" in subject for subject in notifier.subjects()) == 1

    @pytest.mark.asyncio
    async def test_deprovisioned_client_never_rotates(self, scheduler, issuer, registry):
        await scheduler.machine.handle_event({"action": "schedule_rotation", "client_id": "client-abc"})
        await scheduler.machine.deprovision("client-abc")

        await scheduler.run_until(datetime(2026, 4, 2, tzinfo=UTC))

        assert scheduler.delivered == []
        assert issuer.regenerate_calls == 0
