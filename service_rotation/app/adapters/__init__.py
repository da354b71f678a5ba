"""
Collaborator adapters for the rotation state machine.

- credential_issuer: describe clients and regenerate their secrets
- trigger_registry: register and cancel one-shot scheduled triggers
- notifier: deliver operator/client notifications
"""

from .credential_issuer import CredentialIssuer, InMemoryCredentialIssuer
from .notifier import InMemoryNotifier, Notifier, WebhookNotifier
from .trigger_registry import InMemoryTriggerRegistry, TriggerRegistry, TriggerRule

__all__ = [
    "CredentialIssuer",
    "InMemoryCredentialIssuer",
    "InMemoryNotifier",
    "InMemoryTriggerRegistry",
    "Notifier",
    "TriggerRegistry",
    "TriggerRule",
    "WebhookNotifier",
]
