"""
Unit tests for the provider registry and the definition catalog.
"""
import pytest

from app.integrations.definitions import INTEGRATION_DEFINITIONS
from app.integrations.providers.github import GitHubIntegration
from app.integrations.providers.linear import LinearIntegration
from app.integrations.registry import (
    IntegrationRegistry,
    build_registry,
    get_registry,
    registered_provider_classes,
    reset_registry,
)
from app.models.enums import IntegrationCategory, IntegrationProvider, SyncMethod


@pytest.fixture
def clean_registry():
    reset_registry()
    yield
    reset_registry()


class TestIntegrationRegistry:
    def test_first_registration_wins(self):
        registry = IntegrationRegistry()
        first, second = LinearIntegration(), LinearIntegration()

        assert registry.register(first) is True
        assert registry.register(second) is False
        assert registry.get(IntegrationProvider.LINEAR) is first

    def test_lookup_accepts_enum_slug_and_url_form(self):
        registry = IntegrationRegistry()
        registry.register(GitHubIntegration())

        assert registry.get("github") is registry.get(IntegrationProvider.GITHUB)
        assert registry.has("GitHub")
        assert registry.get_definition("google-calendar").id == IntegrationProvider.GOOGLE_CALENDAR

    def test_unknown_provider_is_none(self):
        registry = IntegrationRegistry()

        assert registry.get("myspace") is None
        assert registry.has("myspace") is False
        assert registry.get_definition("myspace") is None

    def test_definitions_group_in_label_order_and_skip_empty(self):
        registry = IntegrationRegistry(
            [d for d in INTEGRATION_DEFINITIONS if d.category != IntegrationCategory.COMMUNICATION]
        )

        grouped = registry.definitions_grouped_by_category()

        assert IntegrationCategory.COMMUNICATION not in grouped
        assert sum(len(members) for members in grouped.values()) == len(registry.all_definitions())


class TestCatalog:
    def test_every_provider_has_exactly_one_definition(self):
        ids = [definition.id for definition in INTEGRATION_DEFINITIONS]

        assert len(ids) == len(set(ids))
        assert set(ids) == set(IntegrationProvider)

    def test_browser_extension_is_push_only(self):
        definition = IntegrationRegistry().get_definition(IntegrationProvider.BROWSER_EXTENSION)

        assert definition.sync_method == SyncMethod.PUSH


class TestProcessRegistry:
    def test_every_provider_class_is_registered(self, clean_registry):
        registry = build_registry()

        assert {instance.provider for instance in registry.all_instances()} == set(registered_provider_classes())
        available = {definition.id for definition in registry.available_definitions()}
        assert set(registered_provider_classes()) == available

    def test_process_registry_is_cached_until_reset(self, clean_registry):
        first = get_registry()

        assert get_registry() is first
        reset_registry()
        assert get_registry() is not first
