"""
External collaborators consumed by the engine.

The template catalog, trading network inventory and notification transport
live outside this service. The protocols below are what the engine needs
from them; the httpx and SMTP classes are the default implementations.
"""

from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import Any, Protocol

import httpx
import markdown

from ..core.exceptions import CollaboratorError
from .types import (
    ApiTemplate,
    ConnectionSettings,
    NotificationSeverity,
    TargetScope,
    TemplateStatus,
)

logger = logging.getLogger(__name__)


class TemplateCatalog(Protocol):
    async def resolve(self, template_id: str, version: str) -> ApiTemplate | None:
        """Return the template, or None when it does not exist."""
        ...

    async def connection(self, provider_ref: str) -> ConnectionSettings:
        """Return base URL, auth headers and rate limits for a provider."""
        ...


class TradingNetworkInventory(Protocol):
    async def list_targets(self, scope: TargetScope, filters: dict[str, list[str]]) -> list[str]:
        """Return ids of all live entities at `scope` matching `filters`."""
        ...


class NotificationTransport(Protocol):
    async def send(
        self,
        recipients: list[str],
        severity: NotificationSeverity,
        subject: str,
        body: str,
    ) -> None:
        ...


# --- HTTP implementations ---


class HttpTemplateCatalog:
    """Template catalog served over HTTP."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def resolve(self, template_id: str, version: str) -> ApiTemplate | None:
        url = f"{self._base_url}/templates/{template_id}/versions/{version}"
        data = await self._get_json(url, allow_missing=True)
        if data is None:
            return None
        try:
            return ApiTemplate(
                id=data.get("id", template_id),
                version=data.get("version", version),
                method=data.get("method", "GET").upper(),
                endpoint=data["endpoint"],
                provider_ref=data["provider_ref"],
                status=TemplateStatus(data.get("status", "active")),
                default_timeout_ms=data.get("default_timeout_ms"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise CollaboratorError(
                f"Malformed template {template_id}@{version}: {e!r}",
                details={"template_id": template_id, "version": version},
            ) from e

    async def connection(self, provider_ref: str) -> ConnectionSettings:
        data = await self._get_json(f"{self._base_url}/providers/{provider_ref}")
        try:
            return ConnectionSettings(
                base_url=data["base_url"],
                headers=data.get("headers", {}),
                rate_limit_per_minute=data.get("rate_limit_per_minute"),
            )
        except (AttributeError, KeyError, TypeError) as e:
            raise CollaboratorError(
                f"Malformed connection settings for {provider_ref}: {e!r}",
                details={"provider_ref": provider_ref},
            ) from e

    async def _get_json(self, url: str, allow_missing: bool = False) -> Any:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Template catalog unreachable: {e}") from e
        if allow_missing and response.status_code == 404:
            return None
        if response.is_error:
            raise CollaboratorError(
                f"Template catalog returned {response.status_code} for {url}",
                details={"status_code": response.status_code},
            )
        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorError(f"Template catalog returned invalid JSON for {url}") from e


class HttpTradingNetworkInventory:
    """Trading network inventory served over HTTP."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def list_targets(self, scope: TargetScope, filters: dict[str, list[str]]) -> list[str]:
        params = {key: ",".join(values) for key, values in filters.items() if values}
        try:
            response = await self._client.get(
                f"{self._base_url}/targets/{scope.value}", params=params
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Inventory query failed for scope {scope.value}: {e}") from e

        try:
            payload = response.json()
            items = payload.get("data", []) if isinstance(payload, dict) else payload
            return [str(item["id"]) if isinstance(item, dict) else str(item) for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise CollaboratorError(
                f"Malformed inventory response for scope {scope.value}: {e!r}"
            ) from e


# --- Notification transports ---


EMAIL_CSS = """
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }
h1 { color: #2c3e50; border-bottom: 2px solid #3498db; padding-bottom: 10px; }
table { border-collapse: collapse; width: 100%; margin: 16px 0; }
th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
th { background: #f8f9fa; font-weight: 600; }
"""


def render_markdown_to_html(markdown_text: str) -> str:
    """Convert a Markdown notice body to a styled HTML document."""
    html_content = markdown.markdown(markdown_text, extensions=["tables", "sane_lists"])
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>{EMAIL_CSS}</style>
</head>
<body>
{html_content}
</body>
</html>"""


class SmtpNotificationTransport:
    """Sends notices as multipart (plain + HTML) email through aiosmtplib."""

    def __init__(
        self,
        hostname: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        start_tls: bool = True,
    ) -> None:
        self._hostname = hostname
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._start_tls = start_tls

    async def send(
        self,
        recipients: list[str],
        severity: NotificationSeverity,
        subject: str,
        body: str,
    ) -> None:
        import aiosmtplib

        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = f"[{severity.value.upper()}] {subject}"
        msg.set_content(body)
        msg.add_alternative(render_markdown_to_html(body), subtype="html")

        await aiosmtplib.send(
            msg,
            hostname=self._hostname,
            port=self._port,
            username=self._username,
            password=self._password,
            start_tls=self._start_tls,
        )


class LoggingNotificationTransport:
    """Fallback transport that only logs notices."""

    async def send(
        self,
        recipients: list[str],
        severity: NotificationSeverity,
        subject: str,
        body: str,
    ) -> None:
        logger.info(
            "Notification [%s] to %s: %s", severity.value, ", ".join(recipients) or "-", subject
        )
