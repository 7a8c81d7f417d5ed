"""
Channel configuration, delivery contracts and outcomes.

The dispatcher only talks to the Protocols declared here; concrete
providers live in dripline.services.providers and
dripline.services.collaborators.
"""
import json
import time
from dataclasses import dataclass, field, asdict
from typing import Callable, Protocol

from dripline.services.rendering import DealContext


@dataclass(frozen=True)
class EmailIdentity:
    """Sender identity for email delivery."""
    from_address: str
    server_token: str
    message_stream: str = "outbound"


@dataclass(frozen=True)
class SmsIdentity:
    """Sender identity for SMS delivery."""
    account_sid: str
    auth_token: str
    from_number: str


@dataclass(frozen=True)
class ChannelConfig:
    """Per-tenant delivery configuration. Either side may be absent."""
    email_identity: EmailIdentity | None = None
    sms_identity: SmsIdentity | None = None


class ChannelConfigProvider(Protocol):
    async def get_channel_config(self, tenant_id: str) -> ChannelConfig: ...


class DealContextProvider(Protocol):
    async def get_deal_context(self, tenant_id: str, deal_id: str) -> DealContext | None: ...


class EmailSender(Protocol):
    async def send_email(self, identity: EmailIdentity, to: str, subject: str, body: str) -> str: ...


class SmsSender(Protocol):
    async def send_sms(self, identity: SmsIdentity, to: str, body: str) -> str: ...


@dataclass
class DeliveryOutcome:
    """Result of one dispatch attempt, persisted onto the job."""
    attempted: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    provider_ids: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    transient: bool = False

    def record_success(self, channel: str, provider_id: str | None):
        self.attempted.append(channel)
        self.succeeded.append(channel)
        if provider_id:
            self.provider_ids[channel] = provider_id

    def record_failure(self, channel: str, error: str, transient: bool = False):
        self.attempted.append(channel)
        self.errors[channel] = error
        self.transient = self.transient or transient

    @property
    def fulfilled(self) -> bool:
        """At least one channel delivered."""
        return bool(self.succeeded)

    @property
    def partial(self) -> bool:
        return self.fulfilled and bool(self.errors)

    def error_summary(self) -> str | None:
        if not self.errors:
            return None
        return " | ".join(f"{channel}: {error}" for channel, error in self.errors.items())

    def to_json(self) -> str:
        return json.dumps(asdict(self))


class ChannelConfigCache:
    """
    TTL cache for tenant channel configuration.

    Injected into the provider that uses it; call invalidate() whenever a
    tenant's configuration is written.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, ChannelConfig]] = {}

    def get(self, tenant_id: str) -> ChannelConfig | None:
        entry = self._entries.get(tenant_id)
        if entry is None:
            return None
        expires_at, config = entry
        if self._clock() >= expires_at:
            del self._entries[tenant_id]
            return None
        return config

    def set(self, tenant_id: str, config: ChannelConfig):
        self._entries[tenant_id] = (self._clock() + self.ttl_seconds, config)

    def invalidate(self, tenant_id: str):
        self._entries.pop(tenant_id, None)

    def clear(self):
        self._entries.clear()


class CachedChannelConfigProvider:
    """Read-through cache in front of another ChannelConfigProvider."""

    def __init__(self, provider: ChannelConfigProvider, cache: ChannelConfigCache):
        self.provider = provider
        self.cache = cache

    async def get_channel_config(self, tenant_id: str) -> ChannelConfig:
        config = self.cache.get(tenant_id)
        if config is None:
            config = await self.provider.get_channel_config(tenant_id)
            self.cache.set(tenant_id, config)
        return config
