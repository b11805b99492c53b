"""
Provider implementations.

Importing this package registers every provider class with the registry.
"""
from app.integrations.providers import (  # noqa: F401
    browser_extension,
    discord,
    github,
    gmail,
    google_calendar,
    google_sheets,
    granola,
    linear,
    notion,
    pocket,
    raindrop,
    readwise,
    slack,
    stripe,
    todoist,
    zoom,
)
