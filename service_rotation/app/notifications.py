"""
Notification subjects and bodies for each rotation event.
"""

import math
from datetime import datetime
from typing import Tuple

from .models import ClientCredential, ClientMetadata

Message = Tuple[str, str]


def _day(moment: datetime) -> str:
    return moment.date().isoformat()


def days_until(now: datetime, moment: datetime) -> int:
    return max(0, math.ceil((moment - now).total_seconds() / 86400))


def provisioned(metadata: ClientMetadata, credential: ClientCredential, rotate_at: datetime,
                environment: str) -> Message:
    grace_days = credential.grace_period.days
    return (
        f"New Client Provisioned: {metadata.client_name}",
        f"Client {metadata.client_name} has been provisioned in {environment} environment.\n\n"
        f"Client ID: {metadata.client_id}\n"
        f"Next credential rotation scheduled for: {_day(rotate_at)}\n"
        f"Rotation frequency: Every {credential.rotation_period.days} days\n"
        f"Grace period: {grace_days} days before rotation\n\n"
        f"You will receive notifications:\n"
        f"- {grace_days} days before rotation (warning)\n"
        f"- On the day of rotation (with new credentials)",
    )


def warning(metadata: ClientMetadata, now: datetime, rotate_at: datetime, environment: str) -> Message:
    countdown = days_until(now, rotate_at)
    return (
        f"Credential Rotation Warning: {metadata.client_name}",
        f"This is a {countdown}-day advance notice.\n\n"
        f"Client: {metadata.client_name}\n"
        f"Client ID: {metadata.client_id}\n"
        f"Environment: {environment}\n"
        f"Scheduled rotation date: {_day(rotate_at)} ({rotate_at.isoformat()})\n\n"
        f"The client secret for \"{metadata.client_name}\" will be rotated in {countdown} days.\n"
        f"On rotation day the current secret is invalidated and the new one is sent here.\n"
        f"Prepare your deployment process to minimize downtime.",
    )


def rotated(metadata: ClientMetadata, new_secret: str, now: datetime, next_rotate_at: datetime,
            environment: str) -> Message:
    return (
        f"Credentials Rotated: {metadata.client_name}",
        f"Client credentials have been rotated successfully.\n\n"
        f"Client: {metadata.client_name}\n"
        f"Environment: {environment}\n"
        f"Rotation Date: {_day(now)}\n"
        f"Next Rotation: {_day(next_rotate_at)}\n\n"
        f"NEW CREDENTIALS (update immediately):\n"
        f"Client ID: {metadata.client_id}\n"
        f"Client Secret: {new_secret}\n\n"
        f"The old secret is now INVALID. Store the new secret securely.",
    )


def rotation_failed(client_id: str, error: str, environment: str) -> Message:
    return (
        f"Rotation Failed: {client_id}",
        f"Failed to rotate credentials for client: {client_id}\n\n"
        f"Environment: {environment}\n"
        f"Error: {error}\n\n"
        f"The previous secret remains valid. Manual intervention is required "
        f"before the next rotation can be scheduled.",
    )
