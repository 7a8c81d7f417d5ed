"""
Template rendering for drip content.

Templates use either {first-name} or {{ first_name }} tokens. Keys are
normalised (lowercase, hyphens to underscores) and unknown tokens render
as an empty string.
"""
import re
from dataclasses import dataclass, field


_TOKEN_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}|\{\s*([^{}]+?)\s*\}")
_KEY_STRIP = re.compile(r"[^a-z0-9_-]")


@dataclass
class RenderedContent:
    """Literal content captured on a job."""
    body: str
    subject: str | None = None


@dataclass
class DealContext:
    """
    What the deal-management collaborator knows about a deal at stage entry.

    variables feed the template tokens; recipient fields are snapshotted on
    every job materialized for the deal.
    """
    tenant_id: str
    deal_id: str
    email: str | None = None
    phone: str | None = None
    drips_disabled: bool = False
    variables: dict[str, str] = field(default_factory=dict)


def normalize_token_key(raw: str) -> str:
    return _KEY_STRIP.sub("", raw.strip().lower()).replace("-", "_")


def normalize_phone(value: str | None) -> str:
    """Normalise a phone number to E.164-ish form (North American default)."""
    digits = re.sub(r"[^0-9+]", "", (value or "").strip())
    if not digits:
        return ""
    if digits.startswith("+"):
        return digits
    if digits.startswith("1") and len(digits) == 11:
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


class TemplateRenderer:
    """Default rendering collaborator."""

    def apply(self, template: str | None, context: dict[str, str]) -> str | None:
        if not template:
            return template

        normalized = {normalize_token_key(key): value for key, value in context.items()}

        def replace(match):
            key = normalize_token_key(match.group(1) or match.group(2) or "")
            if not key:
                return ""
            value = normalized.get(key)
            return "" if value is None else str(value)

        return _TOKEN_PATTERN.sub(replace, template)

    def render(self, template: dict, context: dict[str, str]) -> RenderedContent:
        """
        Render a {subject?, body} template against deal variables.

        Args:
            template: Mapping with "body" and optionally "subject"
            context: Deal/contact/company variables

        Returns:
            RenderedContent with every token substituted
        """
        return RenderedContent(
            subject=self.apply(template.get("subject"), context),
            body=self.apply(template.get("body"), context) or "",
        )
