"""
Integrations module: connect Catalyst Launch to external providers and ingest their content.

Architecture:
- app/models/integration.py: Integration, sync state, ingestion ledger and webhook subscription tables
- types.py: Normalized item, sync options/results and catalog types
- definitions.py / registry.py: Static catalog and live provider instances
- base.py: Provider contract (OAuth, sync, webhooks, HTTP retry)
- providers/: One module per provider, registered with @register_provider
- sync_state.py: Per-integration state machine with a compare-and-set start
- ingestion.py / processor.py: Dedup ledger and downstream capture/memory/task creation
- webhooks.py: Inbound delivery verification, routing and subscription health
- oauth.py / credentials.py: OAuth state and encrypted token handling
- service.py: Orchestration used by the router, tasks and CLI
- router.py / schemas.py: REST API
- tasks.py: Celery tasks (manual, per-user and scheduled syncs)

Design Principles:
- Tokens and secrets are encrypted at rest using Fernet
- Pull syncs and webhook deliveries share one ingestion path
- Adding a provider means adding one module under providers/
"""

from app.models.integration import Integration, IntegrationSyncState, IngestedItem, WebhookSubscription
from app.models.enums import IntegrationProvider

__all__ = [
    "Integration",
    "IntegrationProvider",
    "IntegrationSyncState",
    "IngestedItem",
    "WebhookSubscription",
]
