"""
HTTP clients for the CRM that owns deals and tenant channel settings.

The CRM exposes two internal endpoints:
    GET /internal/tenants/{tenant_id}/channel-config
    GET /internal/tenants/{tenant_id}/deals/{deal_id}/drip-context
"""
import httpx
import structlog

from dripline.config import settings
from dripline.errors import ConfigurationError
from dripline.services.channels import ChannelConfig, EmailIdentity, SmsIdentity
from dripline.services.rendering import DealContext

logger = structlog.get_logger()


def platform_email_identity() -> EmailIdentity | None:
    """Shared platform sender, used when a tenant has no email identity of its own."""
    if not (settings.POSTMARK_SERVER_TOKEN and settings.POSTMARK_FROM_EMAIL):
        return None
    return EmailIdentity(
        from_address=settings.POSTMARK_FROM_EMAIL,
        server_token=settings.POSTMARK_SERVER_TOKEN,
        message_stream=settings.POSTMARK_MESSAGE_STREAM,
    )


class _CrmClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0
    ):
        self.base_url = (base_url or settings.CRM_API_URL).rstrip("/")
        self.token = token if token is not None else settings.CRM_API_TOKEN
        self.client = client
        self.timeout = timeout

    async def _get(self, path: str) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}{path}"
        if self.client is not None:
            return await self.client.get(url, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=headers)


class CrmChannelConfigProvider(_CrmClient):
    """Reads a tenant's email and SMS sender identities from the CRM."""

    async def get_channel_config(self, tenant_id: str) -> ChannelConfig:
        """
        Fetch delivery configuration for a tenant.

        Returns:
            ChannelConfig; a side the tenant has not configured is None

        Raises:
            ConfigurationError: the CRM could not be reached or answered with an error
        """
        try:
            response = await self._get(f"/internal/tenants/{tenant_id}/channel-config")
        except httpx.HTTPError as e:
            raise ConfigurationError(f"channel config unavailable: {e}")

        if response.status_code == 404:
            logger.info("channel_config_missing", tenant_id=tenant_id)
            return ChannelConfig(email_identity=platform_email_identity())
        if response.status_code >= 400:
            raise ConfigurationError(f"channel config unavailable: HTTP {response.status_code}")

        payload = response.json()
        email = payload.get("email") or {}
        sms = payload.get("sms") or {}

        email_identity = None
        if email.get("from_address") and email.get("server_token"):
            email_identity = EmailIdentity(
                from_address=email["from_address"],
                server_token=email["server_token"],
                message_stream=email.get("message_stream") or "outbound",
            )
        elif email.get("from_address") and settings.POSTMARK_SERVER_TOKEN:
            # Verified tenant address sent through the platform server
            email_identity = EmailIdentity(
                from_address=email["from_address"],
                server_token=settings.POSTMARK_SERVER_TOKEN,
                message_stream=settings.POSTMARK_MESSAGE_STREAM,
            )
        else:
            email_identity = platform_email_identity()

        sms_identity = None
        if sms.get("account_sid") and sms.get("auth_token") and sms.get("from_number"):
            sms_identity = SmsIdentity(
                account_sid=sms["account_sid"],
                auth_token=sms["auth_token"],
                from_number=sms["from_number"],
            )

        return ChannelConfig(email_identity=email_identity, sms_identity=sms_identity)


class CrmDealContextProvider(_CrmClient):
    """Reads recipient details and template variables for a deal."""

    async def get_deal_context(self, tenant_id: str, deal_id: str) -> DealContext | None:
        response = await self._get(f"/internal/tenants/{tenant_id}/deals/{deal_id}/drip-context")
        if response.status_code == 404:
            logger.warning("deal_context_missing", tenant_id=tenant_id, deal_id=deal_id)
            return None
        response.raise_for_status()

        payload = response.json()
        variables = {
            str(key): "" if value is None else str(value)
            for key, value in (payload.get("variables") or {}).items()
        }
        return DealContext(
            tenant_id=tenant_id,
            deal_id=deal_id,
            email=payload.get("email"),
            phone=payload.get("phone"),
            drips_disabled=bool(payload.get("drips_disabled", False)),
            variables=variables,
        )
