"""Tenant resolution: maps human-facing identifiers to canonical tenant IDs."""

import json
import re
from pathlib import Path

from pydantic import ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BridgeError, ErrorKind
from shared.models.tenant import Tenant, TenantRegistry

_CANONICAL_ID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def load_tenant_registry(path: str | Path) -> TenantRegistry:
    """Load and validate the tenant registry JSON file.

    Args:
        path (str | Path): Location of the registry file.

    Returns:
        TenantRegistry: The parsed registry.

    Raises:
        ValueError: If the file is missing or does not match the registry schema.
    """
    path = Path(path)
    if not path.is_file():
        raise ValueError(f"Tenant registry file '{path}' does not exist.")
    try:
        return TenantRegistry.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Tenant registry file '{path}' is invalid: {e}")


class TenantResolver:
    """Resolves canonical tenant IDs from IDs, slugs or aliases.

    The registry is injected so it can be swapped per deployment and per test.
    Unknown identifiers fail closed with TENANT_NOT_FOUND. Only in demo mode do
    they fall back to the registry's default tenant, with a warning, because a
    typo would otherwise silently route a request to another tenant's data.
    """

    def __init__(self, helper_config: HelperConfig, registry: TenantRegistry, demo_mode: bool | None = None) -> None:
        self.logging = helper_config.get_logger()
        self._registry = registry
        self._demo_mode = helper_config.get_bool_val("TENANT_DEMO_MODE", default=False) if demo_mode is None else demo_mode
        self._tenants: dict[str, Tenant] = {t.id.lower(): t for t in registry.tenants}
        self._aliases: dict[str, str] = {}
        for tenant in registry.tenants:
            for alias in [tenant.slug, *tenant.aliases]:
                self._aliases[alias.strip().lower()] = tenant.id.lower()

        if self._demo_mode:
            if not registry.default_tenant_id:
                raise ValueError("TENANT_DEMO_MODE is enabled but the tenant registry has no default_tenant_id.")
            self.logging.warning(
                "Tenant demo mode is ON: unknown identifiers fall back to tenant %s. Do not use in production.",
                registry.default_tenant_id,
            )
        self.logging.info("Tenant registry v%d loaded with %d tenant(s).", registry.version, len(registry.tenants))

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_registry(self) -> TenantRegistry:
        return self._registry

    def get_tenants(self) -> list[Tenant]:
        return list(self._registry.tenants)

    def get_embedding_models(self) -> set[str]:
        return {tenant.settings.embedding_model for tenant in self._registry.tenants}

    def get_chat_models(self) -> set[str]:
        return {tenant.settings.chat_model for tenant in self._registry.tenants}

    def get_tenant(self, tenant_id: str) -> Tenant:
        """Return the tenant with the given canonical ID.

        Raises:
            BridgeError: TENANT_NOT_FOUND if the ID is not provisioned.
        """
        tenant = self._tenants.get(tenant_id.lower())
        if tenant is None:
            raise BridgeError(ErrorKind.TENANT_NOT_FOUND, f"Tenant '{tenant_id}' is not provisioned.")
        return tenant

    ##########################################
    ################ CORE ####################
    ##########################################

    def resolve(self, identifier: str) -> str:
        """Map an identifier to a canonical tenant ID.

        Canonical IDs are returned unchanged without a lookup.

        Args:
            identifier (str): Canonical ID, slug or alias.

        Returns:
            str: The canonical tenant ID.

        Raises:
            BridgeError: TENANT_NOT_FOUND for unknown aliases outside demo mode.
        """
        identifier = (identifier or "").strip()
        if _CANONICAL_ID.match(identifier):
            return identifier

        tenant_id = self._aliases.get(identifier.lower())
        if tenant_id is not None:
            return self._tenants[tenant_id].id

        if self._demo_mode:
            self.logging.warning(
                "Unknown tenant identifier %r, falling back to default tenant %s (demo mode).",
                identifier,
                self._registry.default_tenant_id,
            )
            return self._registry.default_tenant_id

        self.logging.warning("Unknown tenant identifier %r rejected.", identifier)
        raise BridgeError(ErrorKind.TENANT_NOT_FOUND, f"Unknown tenant identifier '{identifier}'.")

    def resolve_tenant(self, identifier: str) -> Tenant:
        return self.get_tenant(self.resolve(identifier))
