"""
Enums and constants for the application.
"""
from enum import Enum


class IntegrationProvider(str, Enum):
    """
    Every provider known to the catalog.

    Only some are available; the rest are listed as "coming soon" in the
    integration definitions.
    """
    GRANOLA = "granola"
    ZOOM = "zoom"
    READWISE = "readwise"
    POCKET = "pocket"
    RAINDROP = "raindrop"
    OBSIDIAN = "obsidian"
    ROAM = "roam"
    MEM_AI = "mem_ai"
    INSTAPAPER = "instapaper"
    LINEAR = "linear"
    TODOIST = "todoist"
    TICKTICK = "ticktick"
    GITHUB = "github"
    SLACK = "slack"
    GMAIL = "gmail"
    DISCORD = "discord"
    TELEGRAM = "telegram"
    MICROSOFT_TEAMS = "microsoft_teams"
    GOOGLE_CALENDAR = "google_calendar"
    NOTION = "notion"
    GOOGLE_DRIVE = "google_drive"
    DROPBOX = "dropbox"
    FIGMA = "figma"
    HUBSPOT = "hubspot"
    BROWSER_EXTENSION = "browser_extension"
    CHATGPT = "chatgpt"
    PERPLEXITY = "perplexity"
    STRIPE = "stripe"
    GOOGLE_SHEETS = "google_sheets"

    @classmethod
    def from_slug(cls, value: str) -> "IntegrationProvider":
        """Accept both `google_calendar` and the URL form `google-calendar`."""
        return cls(value.strip().lower().replace("-", "_"))


class IntegrationCategory(str, Enum):
    """Catalog groupings used by the integrations page."""
    MEETINGS_NOTES = "meetings_notes"
    KNOWLEDGE_READING = "knowledge_reading"
    TASKS_PROJECTS = "tasks_projects"
    COMMUNICATION = "communication"
    PRODUCTIVITY = "productivity"
    CAPTURE_TOOLS = "capture_tools"


INTEGRATION_CATEGORY_LABELS = {
    IntegrationCategory.MEETINGS_NOTES: "Meetings & Notes",
    IntegrationCategory.KNOWLEDGE_READING: "Knowledge & Reading",
    IntegrationCategory.TASKS_PROJECTS: "Tasks & Projects",
    IntegrationCategory.COMMUNICATION: "Communication",
    IntegrationCategory.PRODUCTIVITY: "Productivity",
    IntegrationCategory.CAPTURE_TOOLS: "Capture Tools",
}


class AuthMethod(str, Enum):
    """How a provider authenticates."""
    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BOT_TOKEN = "bot_token"
    CUSTOM = "custom"


class SyncMethod(str, Enum):
    """How data reaches us from a provider."""
    PULL = "pull"
    PUSH = "push"
    WEBHOOK = "webhook"
    HYBRID = "hybrid"


class IngestItemType(str, Enum):
    """Kind of content carried by a normalized ingest item."""
    NOTE = "note"
    HIGHLIGHT = "highlight"
    MEETING = "meeting"
    TASK = "task"
    MESSAGE = "message"
    ARTICLE = "article"
    BOOKMARK = "bookmark"
    DOCUMENT = "document"
    EMAIL = "email"
    COMMENT = "comment"
    ISSUE = "issue"
    CLIP = "clip"


class SyncStatus(str, Enum):
    """Lifecycle of a per-integration sync state row."""
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


# States from which a new run may start (and which the scheduler picks up).
STARTABLE_SYNC_STATUSES = (SyncStatus.PENDING, SyncStatus.COMPLETED, SyncStatus.FAILED)


class IngestedItemStatus(str, Enum):
    """Processing state of an ingestion ledger row."""
    PENDING = "pending"
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class Priority(str, Enum):
    """Processing hint priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CaptureType(str, Enum):
    """Capture types created from ingested items."""
    NOTE = "note"
    TASK = "task"
    RESOURCE = "resource"


class TaskStatus(str, Enum):
    """Project task status."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(str, Enum):
    """Project task priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def enum_value(value) -> str:
    """Plain string for an enum member or a value already read back from the database."""
    return value.value if isinstance(value, Enum) else str(value)
