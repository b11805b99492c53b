# Import all models for easy access
from .base import BaseModel
from .capture import Capture, Memory, ProjectTask
from .integration import Integration, IntegrationSyncState, IngestedItem, WebhookSubscription
from .user import User

__all__ = [
    "BaseModel",
    "User",
    "Integration",
    "IntegrationSyncState",
    "IngestedItem",
    "WebhookSubscription",
    "Capture",
    "Memory",
    "ProjectTask",
]
