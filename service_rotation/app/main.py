"""
Rotation service for the M2M Trust Layer.

Receives trigger deliveries from the external scheduling facility. A
provider or trigger failure answers 502 so the facility's own retry
policy takes over.
"""

from datetime import timedelta
from typing import Optional

from fastapi import HTTPException

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .adapters import (
    CredentialIssuer,
    InMemoryCredentialIssuer,
    InMemoryNotifier,
    InMemoryTriggerRegistry,
    Notifier,
    TriggerRegistry,
    WebhookNotifier,
)
from .models import TriggerEvent
from .state_machine import RotationStateMachine


class RotationService(BaseService):
    """Rotation service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        issuer: Optional[CredentialIssuer] = None,
        triggers: Optional[TriggerRegistry] = None,
        notifier: Optional[Notifier] = None,
    ):
        super().__init__("rotation", 8021, config=config)

        if notifier is None:
            if self.config.notification_webhook_url:
                notifier = WebhookNotifier(self.config.notification_webhook_url)
            else:
                notifier = InMemoryNotifier()

        self.state_machine = RotationStateMachine(
            issuer or InMemoryCredentialIssuer(),
            triggers or InMemoryTriggerRegistry(),
            notifier,
            rotation_period=timedelta(days=self.config.rotation_days),
            grace_period=timedelta(days=self.config.grace_period_days),
            environment=self.config.env,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.state_machine.notifier.close()

        self._setup_rotation_routes()

    def _setup_rotation_routes(self):
        """Set up rotation-specific routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "rotation",
                "message": "M2M Trust Layer - Credential Rotation",
                "rotation_days": self.config.rotation_days,
                "grace_period_days": self.config.grace_period_days,
                "version": "1.0.0",
            }

        @self.app.post("/rotation/events")
        async def handle_event(event: TriggerEvent):
            """Trigger delivery: schedule_rotation, send_warning or rotate."""
            return await self.state_machine.handle_event(event.model_dump())

        @self.app.get("/rotation/clients/{client_id}")
        async def get_client(client_id: str):
            cycle = self.state_machine.get_cycle(client_id)
            if cycle is None:
                raise HTTPException(status_code=404, detail="Client not scheduled")
            return cycle.to_dict()

        @self.app.delete("/rotation/clients/{client_id}")
        async def deprovision(client_id: str):
            removed = await self.state_machine.deprovision(client_id)
            return {"client_id": client_id, "deprovisioned": removed}


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create the FastAPI app for the rotation service."""
    return RotationService(config or get_config("rotation", 8021), **kwargs).app


if __name__ == "__main__":
    RotationService().run()
