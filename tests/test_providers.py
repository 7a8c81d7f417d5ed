"""
Postmark/Twilio senders, CRM collaborators and the channel config cache.
"""
import json

import httpx
import pytest

from conftest import EMAIL_IDENTITY, SMS_IDENTITY
from dripline.errors import ConfigurationError, DeliveryError, TransientDeliveryError
from dripline.services.channels import CachedChannelConfigProvider, ChannelConfig, ChannelConfigCache
from dripline.services.collaborators import CrmChannelConfigProvider, CrmDealContextProvider
from dripline.services.providers import PostmarkEmailSender, TwilioSmsSender


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_postmark_sends_with_server_token():
    seen = {}

    def handler(request: httpx.Request):
        seen["token"] = request.headers["X-Postmark-Server-Token"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ErrorCode": 0, "MessageID": "pm-42"})

    async with client_for(handler) as client:
        message_id = await PostmarkEmailSender(client=client).send_email(
            EMAIL_IDENTITY, "jane@example.com", "Hello", "Hi Jane,\nSee you <soon>"
        )

    assert message_id == "pm-42"
    assert seen["token"] == "pm-token"
    assert seen["body"]["To"] == "jane@example.com"
    assert seen["body"]["MessageStream"] == "outbound"
    assert seen["body"]["TextBody"] == "Hi Jane,\nSee you <soon>"
    assert seen["body"]["HtmlBody"] == "Hi Jane,<br>See you &lt;soon&gt;"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code, error", [
    (503, TransientDeliveryError),
    (429, TransientDeliveryError),
    (422, DeliveryError),
])
async def test_postmark_error_classification(status_code, error):
    async with client_for(lambda request: httpx.Response(status_code, text="nope")) as client:
        with pytest.raises(error) as exc_info:
            await PostmarkEmailSender(client=client).send_email(EMAIL_IDENTITY, "jane@example.com", "Hi", "Body")

    assert exc_info.value.transient is (error is TransientDeliveryError)


@pytest.mark.asyncio
async def test_postmark_rejection_reports_provider_message():
    payload = {"ErrorCode": 300, "Message": "Invalid 'To' address: 'not-an-email'."}
    async with client_for(lambda request: httpx.Response(422, json=payload)) as client:
        with pytest.raises(DeliveryError) as exc_info:
            await PostmarkEmailSender(client=client).send_email(EMAIL_IDENTITY, "not-an-email", "Hi", "Body")

    assert exc_info.value.message == "postmark HTTP 422: Invalid 'To' address: 'not-an-email'."
    assert exc_info.value.transient is False


@pytest.mark.asyncio
async def test_twilio_transport_error_is_transient():
    def handler(request: httpx.Request):
        raise httpx.ConnectError("connection refused", request=request)

    async with client_for(handler) as client:
        with pytest.raises(TransientDeliveryError):
            await TwilioSmsSender(client=client).send_sms(SMS_IDENTITY, "+15551234567", "Hi")


@pytest.mark.asyncio
async def test_twilio_posts_form_to_account():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["body"] = request.content.decode()
        return httpx.Response(201, json={"sid": "SM-9"})

    async with client_for(handler) as client:
        sid = await TwilioSmsSender(client=client).send_sms(SMS_IDENTITY, "+15551234567", "Hi there")

    assert sid == "SM-9"
    assert seen["url"].endswith("/Accounts/AC123/Messages.json")
    assert "Body=Hi+there" in seen["body"]


@pytest.mark.asyncio
async def test_crm_channel_config_parses_both_identities():
    payload = {
        "email": {"from_address": "crew@paintpros.example", "server_token": "tenant-token"},
        "sms": {"account_sid": "AC1", "auth_token": "t", "from_number": "+15550001111"},
    }
    async with client_for(lambda request: httpx.Response(200, json=payload)) as client:
        config = await CrmChannelConfigProvider(base_url="http://crm", client=client).get_channel_config("tenant-1")

    assert config.email_identity.server_token == "tenant-token"
    assert config.sms_identity.from_number == "+15550001111"


@pytest.mark.asyncio
async def test_crm_channel_config_without_sms():
    async with client_for(lambda request: httpx.Response(200, json={"email": None, "sms": None})) as client:
        config = await CrmChannelConfigProvider(base_url="http://crm", client=client).get_channel_config("tenant-1")

    assert config.sms_identity is None


@pytest.mark.asyncio
async def test_crm_channel_config_outage_is_a_configuration_error():
    async with client_for(lambda request: httpx.Response(500)) as client:
        with pytest.raises(ConfigurationError):
            await CrmChannelConfigProvider(base_url="http://crm", client=client).get_channel_config("tenant-1")


@pytest.mark.asyncio
async def test_crm_deal_context():
    payload = {
        "email": "jane@example.com",
        "phone": "5551234567",
        "drips_disabled": False,
        "variables": {"first-name": "Jane", "job-count": 3},
    }

    def handler(request: httpx.Request):
        if request.url.path.endswith("/deals/deal-1/drip-context"):
            return httpx.Response(200, json=payload)
        return httpx.Response(404)

    async with client_for(handler) as client:
        provider = CrmDealContextProvider(base_url="http://crm", client=client)
        context = await provider.get_deal_context("tenant-1", "deal-1")
        missing = await provider.get_deal_context("tenant-1", "deal-2")

    assert context.email == "jane@example.com"
    assert context.variables == {"first-name": "Jane", "job-count": "3"}
    assert missing is None


class CountingProvider:
    def __init__(self):
        self.calls = 0

    async def get_channel_config(self, tenant_id: str) -> ChannelConfig:
        self.calls += 1
        return ChannelConfig(email_identity=EMAIL_IDENTITY)


@pytest.mark.asyncio
async def test_channel_config_cache_ttl_and_invalidate():
    now = [0.0]
    cache = ChannelConfigCache(ttl_seconds=60, clock=lambda: now[0])
    inner = CountingProvider()
    provider = CachedChannelConfigProvider(inner, cache)

    await provider.get_channel_config("tenant-1")
    await provider.get_channel_config("tenant-1")
    assert inner.calls == 1

    now[0] = 61.0
    await provider.get_channel_config("tenant-1")
    assert inner.calls == 2

    cache.invalidate("tenant-1")
    await provider.get_channel_config("tenant-1")
    assert inner.calls == 3

    cache.clear()
    assert cache.get("tenant-1") is None
