"""
Static catalog of integration definitions.

Loaded once into the registry; never mutated at runtime.
"""
from typing import List

from app.integrations.types import IntegrationDefinition, IntegrationFeatures
from app.models.enums import (
    AuthMethod as A,
    IngestItemType as T,
    IntegrationCategory as C,
    IntegrationProvider as P,
    SyncMethod as S,
)


def _features(realtime=False, bidirectional=False, incremental_sync=False, webhooks=False) -> IntegrationFeatures:
    return IntegrationFeatures(
        realtime=realtime,
        bidirectional=bidirectional,
        incremental_sync=incremental_sync,
        webhooks=webhooks,
    )


INTEGRATION_DEFINITIONS: List[IntegrationDefinition] = [
    # Meetings & Notes
    IntegrationDefinition(
        id=P.GRANOLA,
        name="Granola",
        description="AI-powered meeting notes. Automatically capture and summarize your meetings.",
        icon="brain",
        category=C.MEETINGS_NOTES,
        auth_method=A.API_KEY,
        sync_method=S.PULL,
        supported_types=(T.MEETING, T.NOTE),
        default_sync_interval=5,
        features=_features(incremental_sync=True),
    ),
    IntegrationDefinition(
        id=P.ZOOM,
        name="Zoom",
        description="Import meeting recordings and transcripts from Zoom.",
        icon="video",
        category=C.MEETINGS_NOTES,
        auth_method=A.OAUTH2,
        scopes=("recording:read", "user:read"),
        sync_method=S.PULL,
        supported_types=(T.MEETING,),
        default_sync_interval=30,
        features=_features(incremental_sync=True, webhooks=True),
    ),

    # Knowledge & Reading
    IntegrationDefinition(
        id=P.READWISE,
        name="Readwise",
        description="Sync your reading highlights from Kindle, web articles, and more.",
        icon="book-open",
        category=C.KNOWLEDGE_READING,
        auth_method=A.OAUTH2,
        sync_method=S.WEBHOOK,
        supported_types=(T.HIGHLIGHT, T.NOTE, T.ARTICLE),
        default_sync_interval=60,
        features=_features(realtime=True, incremental_sync=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.POCKET,
        name="Pocket",
        description="Import your saved articles and reading list from Pocket.",
        icon="bookmark",
        category=C.KNOWLEDGE_READING,
        auth_method=A.OAUTH2,
        sync_method=S.PULL,
        supported_types=(T.ARTICLE, T.BOOKMARK),
        default_sync_interval=30,
        features=_features(incremental_sync=True),
    ),
    IntegrationDefinition(
        id=P.RAINDROP,
        name="Raindrop.io",
        description="Sync your bookmarks and collections from Raindrop.",
        icon="cloud-rain",
        category=C.KNOWLEDGE_READING,
        auth_method=A.OAUTH2,
        sync_method=S.PULL,
        supported_types=(T.BOOKMARK, T.ARTICLE),
        default_sync_interval=30,
        features=_features(incremental_sync=True),
    ),
    IntegrationDefinition(
        id=P.OBSIDIAN,
        name="Obsidian",
        description="Connect your Obsidian vault via the REST API plugin.",
        icon="gem",
        category=C.KNOWLEDGE_READING,
        auth_method=A.API_KEY,
        sync_method=S.PULL,
        supported_types=(T.NOTE, T.DOCUMENT),
        default_sync_interval=15,
        features=_features(bidirectional=True, incremental_sync=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.ROAM,
        name="Roam Research",
        description="Sync your notes and daily pages from Roam Research.",
        icon="network",
        category=C.KNOWLEDGE_READING,
        auth_method=A.API_KEY,
        sync_method=S.PULL,
        supported_types=(T.NOTE, T.DOCUMENT),
        default_sync_interval=30,
        features=_features(incremental_sync=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.MEM_AI,
        name="Mem.ai",
        description="Import your AI-organized notes from Mem.",
        icon="sparkles",
        category=C.KNOWLEDGE_READING,
        auth_method=A.API_KEY,
        sync_method=S.PULL,
        supported_types=(T.NOTE,),
        default_sync_interval=30,
        features=_features(incremental_sync=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.INSTAPAPER,
        name="Instapaper",
        description="Sync saved articles and highlights from Instapaper.",
        icon="file-text",
        category=C.KNOWLEDGE_READING,
        auth_method=A.OAUTH2,
        sync_method=S.PULL,
        supported_types=(T.ARTICLE, T.HIGHLIGHT),
        default_sync_interval=30,
        features=_features(incremental_sync=True),
        is_available=False,
        is_coming_soon=True,
    ),

    # Tasks & Projects
    IntegrationDefinition(
        id=P.LINEAR,
        name="Linear",
        description="Sync issues and projects from Linear for seamless project tracking.",
        icon="layout-list",
        category=C.TASKS_PROJECTS,
        auth_method=A.OAUTH2,
        scopes=("read", "write", "issues:create"),
        sync_method=S.WEBHOOK,
        supported_types=(T.ISSUE, T.TASK, T.COMMENT),
        default_sync_interval=5,
        features=_features(realtime=True, bidirectional=True, incremental_sync=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.TODOIST,
        name="Todoist",
        description="Two-way sync with your Todoist tasks and projects.",
        icon="check-square",
        category=C.TASKS_PROJECTS,
        auth_method=A.OAUTH2,
        scopes=("data:read_write",),
        sync_method=S.HYBRID,
        supported_types=(T.TASK,),
        default_sync_interval=5,
        features=_features(realtime=True, bidirectional=True, incremental_sync=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.TICKTICK,
        name="TickTick",
        description="Sync tasks and habits from TickTick.",
        icon="list-checks",
        category=C.TASKS_PROJECTS,
        auth_method=A.OAUTH2,
        sync_method=S.PULL,
        supported_types=(T.TASK,),
        default_sync_interval=15,
        features=_features(bidirectional=True, incremental_sync=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.GITHUB,
        name="GitHub",
        description="Monitor repository activity, commits, PRs, and releases.",
        icon="github",
        category=C.TASKS_PROJECTS,
        auth_method=A.OAUTH2,
        scopes=("repo", "read:user"),
        sync_method=S.WEBHOOK,
        supported_types=(T.ISSUE, T.NOTE, T.COMMENT, T.DOCUMENT),
        default_sync_interval=15,
        features=_features(realtime=True, incremental_sync=True, webhooks=True),
    ),

    # Communication
    IntegrationDefinition(
        id=P.SLACK,
        name="Slack",
        description="Get notifications and capture important messages from Slack.",
        icon="message-square",
        category=C.COMMUNICATION,
        auth_method=A.OAUTH2,
        scopes=("chat:write", "commands", "users:read"),
        sync_method=S.WEBHOOK,
        supported_types=(T.MESSAGE,),
        default_sync_interval=0,
        features=_features(realtime=True, bidirectional=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.GMAIL,
        name="Gmail",
        description="Capture important emails and turn them into actionable items.",
        icon="mail",
        category=C.COMMUNICATION,
        auth_method=A.OAUTH2,
        scopes=("https://www.googleapis.com/auth/gmail.readonly",),
        sync_method=S.PULL,
        supported_types=(T.EMAIL, T.MESSAGE),
        default_sync_interval=15,
        features=_features(incremental_sync=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.DISCORD,
        name="Discord",
        description="Capture messages and threads from your Discord servers.",
        icon="message-circle",
        category=C.COMMUNICATION,
        auth_method=A.OAUTH2,
        scopes=("identify", "guilds", "messages.read"),
        sync_method=S.WEBHOOK,
        supported_types=(T.MESSAGE,),
        default_sync_interval=0,
        features=_features(realtime=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.TELEGRAM,
        name="Telegram",
        description="Save messages from Telegram via bot integration.",
        icon="send",
        category=C.COMMUNICATION,
        auth_method=A.BOT_TOKEN,
        sync_method=S.WEBHOOK,
        supported_types=(T.MESSAGE,),
        default_sync_interval=0,
        features=_features(realtime=True, bidirectional=True, webhooks=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.MICROSOFT_TEAMS,
        name="Microsoft Teams",
        description="Capture messages and meeting notes from Teams.",
        icon="users",
        category=C.COMMUNICATION,
        auth_method=A.OAUTH2,
        scopes=("User.Read", "Chat.Read", "ChannelMessage.Read.All"),
        sync_method=S.WEBHOOK,
        supported_types=(T.MESSAGE, T.MEETING),
        default_sync_interval=15,
        features=_features(realtime=True, incremental_sync=True, webhooks=True),
        is_available=False,
        is_coming_soon=True,
    ),

    # Productivity
    IntegrationDefinition(
        id=P.GOOGLE_CALENDAR,
        name="Google Calendar",
        description="Sync milestones and deadlines with Google Calendar.",
        icon="calendar",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        scopes=("https://www.googleapis.com/auth/calendar.events",),
        sync_method=S.HYBRID,
        supported_types=(T.MEETING,),
        default_sync_interval=15,
        features=_features(bidirectional=True, incremental_sync=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.NOTION,
        name="Notion",
        description="Export documents and sync databases with Notion.",
        icon="file-text",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        scopes=("read_content", "update_content"),
        sync_method=S.PULL,
        supported_types=(T.NOTE, T.DOCUMENT, T.TASK),
        default_sync_interval=30,
        features=_features(bidirectional=True, incremental_sync=True),
    ),
    IntegrationDefinition(
        id=P.GOOGLE_DRIVE,
        name="Google Drive",
        description="Import documents and files from Google Drive.",
        icon="hard-drive",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        scopes=("https://www.googleapis.com/auth/drive.readonly",),
        sync_method=S.PULL,
        supported_types=(T.DOCUMENT,),
        default_sync_interval=60,
        features=_features(incremental_sync=True, webhooks=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.DROPBOX,
        name="Dropbox",
        description="Import files and documents from Dropbox.",
        icon="box",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        sync_method=S.PULL,
        supported_types=(T.DOCUMENT,),
        default_sync_interval=60,
        features=_features(incremental_sync=True, webhooks=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.FIGMA,
        name="Figma",
        description="Capture design comments and file updates from Figma.",
        icon="pen-tool",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        scopes=("files:read",),
        sync_method=S.WEBHOOK,
        supported_types=(T.COMMENT, T.DOCUMENT),
        default_sync_interval=30,
        features=_features(realtime=True, incremental_sync=True, webhooks=True),
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.HUBSPOT,
        name="HubSpot",
        description="Sync contacts and deals from HubSpot CRM.",
        icon="briefcase",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        scopes=("crm.objects.contacts.read", "crm.objects.deals.read"),
        sync_method=S.PULL,
        supported_types=(T.NOTE, T.TASK),
        default_sync_interval=30,
        features=_features(incremental_sync=True, webhooks=True),
        is_available=False,
        is_coming_soon=True,
    ),

    # Capture Tools
    IntegrationDefinition(
        id=P.BROWSER_EXTENSION,
        name="Browser Extension",
        description="Clip web pages, articles, and highlights directly from your browser.",
        icon="globe",
        category=C.CAPTURE_TOOLS,
        auth_method=A.CUSTOM,
        sync_method=S.PUSH,
        supported_types=(T.CLIP, T.HIGHLIGHT, T.BOOKMARK, T.ARTICLE),
        default_sync_interval=0,
        features=_features(realtime=True),
    ),
    IntegrationDefinition(
        id=P.CHATGPT,
        name="ChatGPT",
        description="Import your ChatGPT conversation history.",
        icon="bot",
        category=C.CAPTURE_TOOLS,
        auth_method=A.CUSTOM,
        sync_method=S.PUSH,
        supported_types=(T.MESSAGE, T.NOTE),
        default_sync_interval=0,
        is_available=False,
        is_coming_soon=True,
    ),
    IntegrationDefinition(
        id=P.PERPLEXITY,
        name="Perplexity",
        description="Import research sessions from Perplexity AI.",
        icon="search",
        category=C.CAPTURE_TOOLS,
        auth_method=A.API_KEY,
        sync_method=S.PULL,
        supported_types=(T.NOTE, T.ARTICLE),
        default_sync_interval=60,
        features=_features(incremental_sync=True),
        is_available=False,
        is_coming_soon=True,
    ),

    # Revenue & Metrics
    IntegrationDefinition(
        id=P.STRIPE,
        name="Stripe",
        description="Automatically track revenue, MRR, and customer milestones from Stripe.",
        icon="credit-card",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        scopes=("read_only",),
        sync_method=S.WEBHOOK,
        supported_types=(T.NOTE,),
        default_sync_interval=60,
        features=_features(realtime=True, incremental_sync=True, webhooks=True),
    ),
    IntegrationDefinition(
        id=P.GOOGLE_SHEETS,
        name="Google Sheets",
        description="Import metrics and traction data from Google Sheets.",
        icon="table",
        category=C.PRODUCTIVITY,
        auth_method=A.OAUTH2,
        scopes=("https://www.googleapis.com/auth/spreadsheets.readonly",),
        sync_method=S.PULL,
        supported_types=(T.NOTE,),
        default_sync_interval=60,
        features=_features(incremental_sync=True),
    ),
]
