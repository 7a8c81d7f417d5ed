"""
Delivery providers: Postmark for email, Twilio for SMS.

Both talk plain HTTPS through httpx. Throttling, 5xx responses, timeouts
and transport failures raise TransientDeliveryError; every other non-2xx
response raises DeliveryError. Neither sender retries.
"""
import html

import httpx
import structlog

from dripline.errors import DeliveryError, TransientDeliveryError
from dripline.services.channels import EmailIdentity, SmsIdentity

logger = structlog.get_logger()

POSTMARK_API_URL = "https://api.postmarkapp.com/email"
TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
DEFAULT_TIMEOUT = 10.0


def _error_detail(response: httpx.Response) -> str:
    # Postmark and Twilio both describe failures in a JSON Message/message field
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        detail = payload.get("Message") or payload.get("message")
        if detail:
            return str(detail)
    return response.text[:200]


def _raise_for_response(provider: str, response: httpx.Response):
    if 200 <= response.status_code < 300:
        return
    message = f"{provider} HTTP {response.status_code}: {_error_detail(response)}"
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientDeliveryError(message)
    raise DeliveryError(message)


def to_html(body: str) -> str:
    """Plain-text body as minimal HTML: escaped, with line breaks kept."""
    return html.escape(body).replace("\n", "<br>")


class _HttpSender:
    """Shared request plumbing. A client may be injected; otherwise one is opened per send."""

    provider = "http"

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.client = client
        self.timeout = timeout

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        try:
            if self.client is not None:
                response = await self.client.post(url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientDeliveryError(f"{self.provider} timed out: {e}")
        except httpx.TransportError as e:
            raise TransientDeliveryError(f"{self.provider} unreachable: {e}")

        _raise_for_response(self.provider, response)
        return response


class PostmarkEmailSender(_HttpSender):
    """Sends email through the Postmark /email endpoint."""

    provider = "postmark"

    async def send_email(self, identity: EmailIdentity, to: str, subject: str, body: str) -> str:
        """
        Send a single email.

        Returns:
            Postmark MessageID
        """
        response = await self._post(
            POSTMARK_API_URL,
            json={
                "From": identity.from_address,
                "To": to,
                "Subject": subject,
                "TextBody": body,
                "HtmlBody": to_html(body),
                "MessageStream": identity.message_stream,
            },
            headers={
                "Accept": "application/json",
                "X-Postmark-Server-Token": identity.server_token,
            },
        )
        payload = response.json()
        # Postmark reports some rejections with a 200 and a non-zero ErrorCode
        if payload.get("ErrorCode"):
            raise DeliveryError(f"postmark error {payload['ErrorCode']}: {payload.get('Message', '')}")
        message_id = payload.get("MessageID", "")
        logger.info("email_sent", provider=self.provider, message_id=message_id)
        return message_id


class TwilioSmsSender(_HttpSender):
    """Sends SMS through the Twilio Messages API."""

    provider = "twilio"

    async def send_sms(self, identity: SmsIdentity, to: str, body: str) -> str:
        """
        Send a single SMS.

        Returns:
            Twilio message SID
        """
        response = await self._post(
            f"{TWILIO_API_URL}/Accounts/{identity.account_sid}/Messages.json",
            data={"To": to, "From": identity.from_number, "Body": body},
            auth=(identity.account_sid, identity.auth_token),
        )
        sid = response.json().get("sid", "")
        logger.info("sms_sent", provider=self.provider, sid=sid)
        return sid
