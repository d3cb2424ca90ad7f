"""
Tenant configuration models and read-only configuration sources.

A tenant's configuration is owned by an external system; this module only
reads it. Sources:
- InMemoryTenantConfigSource: fixed mapping (development and tests)
- FileTenantConfigSource: one ``<tenant_id>.json`` file per tenant
- CachedTenantConfigSource: TTL cache in front of any other source

Version: 1.0.0
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import TenantNotFoundError

logger = logging.getLogger(__name__)


# ===========================
# Tool Definitions
# ===========================

class WebhookExecution(BaseModel):
    """Tool executed by POSTing to a tenant-hosted endpoint."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["webhook"] = "webhook"
    url: str = Field(..., min_length=1)
    credentials_ref: Optional[str] = Field(
        default=None,
        description="Bearer token sent to the webhook"
    )


class InProcessExecution(BaseModel):
    """Tool executed by a handler registered in this process."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["in_process"] = "in_process"
    handler_id: str = Field(..., min_length=1)


ToolExecution = Annotated[
    Union[WebhookExecution, InProcessExecution],
    Field(discriminator="mode")
]


class ToolDefinition(BaseModel):
    """A tenant-scoped tool the agent may invoke."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)
    execution: ToolExecution


# ===========================
# Tenant Configuration
# ===========================

class Branding(BaseModel):
    company_name: str = Field(..., min_length=1)
    description: str = ""


class TenantConfig(BaseModel):
    """
    Per-tenant agent configuration.

    ``approval_rules`` are regular expressions evaluated in order against the
    lowercased message; the first match requires human approval.
    """
    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(..., min_length=1)
    agent_persona: str = Field(default="Support Assistant")
    branding: Branding
    tone_descriptor: str = Field(default="professional")
    greeting: Optional[str] = None
    tool_definitions: List[ToolDefinition] = Field(default_factory=list)
    approval_rules: List[str] = Field(default_factory=list)
    api_key_ref: Optional[str] = None
    approval_webhook_url: Optional[str] = None
    knowledge_namespace: Optional[str] = Field(
        default=None,
        description="Overrides the default '<tenant_id>-kb' knowledge namespace"
    )

    def tool(self, name: str) -> Optional[ToolDefinition]:
        for definition in self.tool_definitions:
            if definition.name == name:
                return definition
        return None

    @property
    def tool_names(self) -> List[str]:
        return [definition.name for definition in self.tool_definitions]


# ===========================
# Configuration Sources
# ===========================

class TenantConfigSource(ABC):
    """Read-only lookup of tenant configuration."""

    @abstractmethod
    async def get(self, tenant_id: str) -> TenantConfig:
        """
        Get configuration for a tenant.

        Raises:
            TenantNotFoundError: If the tenant has no configuration
        """
        pass

    async def close(self) -> None:
        """Release resources held by the source."""
        return None


class InMemoryTenantConfigSource(TenantConfigSource):
    """Tenant configurations held in a dictionary."""

    def __init__(self, configs: Optional[Dict[str, TenantConfig]] = None):
        self.configs: Dict[str, TenantConfig] = dict(configs or {})

    def add(self, config: TenantConfig) -> None:
        self.configs[config.tenant_id] = config

    async def get(self, tenant_id: str) -> TenantConfig:
        config = self.configs.get(tenant_id)
        if config is None:
            raise TenantNotFoundError(
                f"Tenant '{tenant_id}' not found",
                details={"tenant_id": tenant_id}
            )
        return config


class FileTenantConfigSource(TenantConfigSource):
    """
    Tenant configurations stored as JSON files.

    Each tenant is ``<directory>/<tenant_id>.json``. Files are read on every
    call; wrap in :class:`CachedTenantConfigSource` for production use.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        logger.info(f"FileTenantConfigSource initialized (directory={self.directory})")

    def _path_for(self, tenant_id: str) -> Path:
        # Tenant ids are used as file names; reject path separators
        if not tenant_id or "/" in tenant_id or "\\" in tenant_id or tenant_id.startswith("."):
            raise TenantNotFoundError(
                f"Invalid tenant id '{tenant_id}'",
                details={"tenant_id": tenant_id}
            )
        return self.directory / f"{tenant_id}.json"

    def _load(self, tenant_id: str) -> TenantConfig:
        path = self._path_for(tenant_id)
        if not path.is_file():
            raise TenantNotFoundError(
                f"Tenant '{tenant_id}' not found",
                details={"tenant_id": tenant_id}
            )

        try:
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Unreadable tenant configuration {path}: {e}")
            raise TenantNotFoundError(
                f"Tenant '{tenant_id}' has an unreadable configuration",
                details={"tenant_id": tenant_id}
            )

        if not isinstance(raw, dict):
            raise TenantNotFoundError(
                f"Tenant '{tenant_id}' has an invalid configuration",
                details={"tenant_id": tenant_id}
            )

        raw.setdefault("tenant_id", tenant_id)
        try:
            return TenantConfig.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Invalid tenant configuration in {path}: {e}")
            raise TenantNotFoundError(
                f"Tenant '{tenant_id}' has an invalid configuration",
                details={"tenant_id": tenant_id}
            )

    async def get(self, tenant_id: str) -> TenantConfig:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load, tenant_id)


class CachedTenantConfigSource(TenantConfigSource):
    """TTL cache in front of another source."""

    def __init__(
        self,
        source: TenantConfigSource,
        maxsize: int = 1000,
        ttl: int = 300
    ):
        self.source = source
        self.cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self.lock = asyncio.Lock()

    async def get(self, tenant_id: str) -> TenantConfig:
        async with self.lock:
            cached = self.cache.get(tenant_id)
        if cached is not None:
            return cached

        config = await self.source.get(tenant_id)

        async with self.lock:
            self.cache[tenant_id] = config
        return config

    async def invalidate(self, tenant_id: Optional[str] = None) -> None:
        async with self.lock:
            if tenant_id is None:
                self.cache.clear()
            else:
                self.cache.pop(tenant_id, None)

    async def close(self) -> None:
        await self.source.close()


def sample_tenant_configs() -> Dict[str, TenantConfig]:
    """Development tenants wired to the built-in in-process handlers."""
    def in_process(name: str, description: str, properties: Dict[str, Any], required: List[str]):
        return ToolDefinition(
            name=name,
            description=description,
            parameters={"type": "object", "properties": properties, "required": required},
            execution=InProcessExecution(handler_id=name)
        )

    common_tools = [
        in_process(
            "account_lookup",
            "Look up customer account information",
            {"accountId": {"type": "string", "description": "The account ID to look up"}},
            ["accountId"]
        ),
        in_process(
            "order_status",
            "Track the status of a customer order",
            {"orderId": {"type": "string", "description": "The order ID to track"}},
            ["orderId"]
        ),
        in_process(
            "billing_check",
            "Check billing status and recent invoices for an account",
            {"accountId": {"type": "string"}},
            []
        ),
        in_process(
            "technical_diagnostic",
            "Run basic diagnostics for a reported technical problem",
            {"symptom": {"type": "string"}},
            []
        ),
        in_process(
            "product_info",
            "Look up product details and availability",
            {"productId": {"type": "string"}},
            []
        ),
        in_process(
            "schedule_appointment",
            "Schedule a customer appointment or service call",
            {
                "service": {"type": "string"},
                "date": {"type": "string", "description": "YYYY-MM-DD"},
                "timeSlot": {"type": "string", "enum": ["morning", "afternoon", "evening"]}
            },
            ["service", "date", "timeSlot"]
        )
    ]

    return {
        "company-1": TenantConfig(
            tenant_id="company-1",
            agent_persona="SupportBot",
            branding=Branding(
                company_name="TechCorp",
                description="A leading technology company providing innovative solutions."
            ),
            tone_descriptor="professional",
            greeting="Welcome to TechCorp support! How can I assist you today?",
            tool_definitions=common_tools
        ),
        "company-2": TenantConfig(
            tenant_id="company-2",
            agent_persona="Helpy",
            branding=Branding(
                company_name="FriendlyShop",
                description="Your friendly neighborhood online store."
            ),
            tone_descriptor="casual",
            greeting="Hey there! I'm Helpy from FriendlyShop. What can I help you with today?",
            tool_definitions=common_tools,
            approval_rules=[r"\bexchange\b.*\bwithout receipt\b"]
        )
    }


__all__ = [
    'WebhookExecution',
    'InProcessExecution',
    'ToolDefinition',
    'Branding',
    'TenantConfig',
    'TenantConfigSource',
    'InMemoryTenantConfigSource',
    'FileTenantConfigSource',
    'CachedTenantConfigSource',
    'sample_tenant_configs'
]
