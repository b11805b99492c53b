"""
Integration registry.

Two tiers:
- definitions: the static catalog, read-only, one per provider
- instances: live provider objects, registered once per process

Provider modules decorate their class with `register_provider`; the
process-wide registry is built lazily by `get_registry()` which imports the
provider package exactly once. Tests build their own `IntegrationRegistry`.
"""
import threading
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Type, TypeVar

from app.core.logging_config import log_debug, log_warning
from app.integrations.base import BaseIntegration
from app.integrations.definitions import INTEGRATION_DEFINITIONS
from app.integrations.types import IntegrationDefinition
from app.models.enums import INTEGRATION_CATEGORY_LABELS, IntegrationCategory, IntegrationProvider

IntegrationT = TypeVar("IntegrationT", bound=Type[BaseIntegration])

# provider -> class, filled by @register_provider at import time
_PROVIDER_CLASSES: Dict[IntegrationProvider, Type[BaseIntegration]] = {}


def register_provider(cls: IntegrationT) -> IntegrationT:
    """Class decorator that makes a provider implementation discoverable."""
    existing = _PROVIDER_CLASSES.get(cls.provider)
    if existing is not None and existing is not cls:
        log_warning(
            f"Provider {cls.provider.value} already registered by {existing.__name__}; ignoring {cls.__name__}"
        )
        return cls
    _PROVIDER_CLASSES[cls.provider] = cls
    return cls


def registered_provider_classes() -> Dict[IntegrationProvider, Type[BaseIntegration]]:
    return dict(_PROVIDER_CLASSES)


class IntegrationRegistry:
    """Lookup of provider definitions and live provider instances."""

    def __init__(self, definitions: Optional[Iterable[IntegrationDefinition]] = None):
        catalog = INTEGRATION_DEFINITIONS if definitions is None else definitions
        self._definitions: Dict[IntegrationProvider, IntegrationDefinition] = OrderedDict(
            (definition.id, definition) for definition in catalog
        )
        self._instances: Dict[IntegrationProvider, BaseIntegration] = {}
        self._lock = threading.Lock()

    # ----- instances -----

    def register(self, integration: BaseIntegration) -> bool:
        """
        Register a provider instance.

        Returns False (and logs) when the provider already has an instance;
        the first registration wins.
        """
        provider = integration.provider
        with self._lock:
            if provider in self._instances:
                log_warning(
                    f"Integration {provider.value} is already registered"
                )
                return False
            self._instances[provider] = integration
        log_debug(f"Registered integration {provider.value}")
        return True

    def get(self, provider) -> Optional[BaseIntegration]:
        key = self._coerce(provider)
        return self._instances.get(key) if key else None

    def has(self, provider) -> bool:
        key = self._coerce(provider)
        return key is not None and key in self._instances

    def all_instances(self) -> List[BaseIntegration]:
        return list(self._instances.values())

    # ----- definitions -----

    def get_definition(self, provider) -> Optional[IntegrationDefinition]:
        key = self._coerce(provider)
        return self._definitions.get(key) if key else None

    def all_definitions(self) -> List[IntegrationDefinition]:
        return list(self._definitions.values())

    def definitions_by_category(self, category: IntegrationCategory) -> List[IntegrationDefinition]:
        return [d for d in self._definitions.values() if d.category == category]

    def available_definitions(self) -> List[IntegrationDefinition]:
        return [d for d in self._definitions.values() if d.is_available]

    def definitions_grouped_by_category(self) -> Dict[IntegrationCategory, List[IntegrationDefinition]]:
        """Definitions grouped in catalog label order; empty categories are omitted."""
        grouped: Dict[IntegrationCategory, List[IntegrationDefinition]] = OrderedDict()
        for category in INTEGRATION_CATEGORY_LABELS:
            members = self.definitions_by_category(category)
            if members:
                grouped[category] = members
        return grouped

    @staticmethod
    def _coerce(provider) -> Optional[IntegrationProvider]:
        if isinstance(provider, IntegrationProvider):
            return provider
        try:
            return IntegrationProvider.from_slug(str(provider))
        except ValueError:
            return None


_registry: Optional[IntegrationRegistry] = None
_registry_lock = threading.Lock()


def build_registry(provider_classes: Optional[Iterable[Type[BaseIntegration]]] = None) -> IntegrationRegistry:
    """Instantiate every registered provider class into a new registry."""
    if provider_classes is None:
        import app.integrations.providers  # noqa: F401  (runs @register_provider)
        provider_classes = _PROVIDER_CLASSES.values()

    registry = IntegrationRegistry()
    for cls in provider_classes:
        registry.register(cls())
    return registry


def get_registry() -> IntegrationRegistry:
    """Process-wide registry, built on first use."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = build_registry()
    return _registry


def reset_registry() -> None:
    """Drop the process registry (tests)."""
    global _registry
    with _registry_lock:
        _registry = None
