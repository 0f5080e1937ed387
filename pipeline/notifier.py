"""
Notifications to the AP team.

Sends a templated Microsoft Teams MessageCard to the configured incoming
webhook when a hold is created or a bill is drafted over tolerance.  With no
webhook configured the message is only logged.  Delivery problems are logged
and never stop the pipeline.
"""
import json
import logging
import os
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Optional, Protocol

from jinja2 import FileSystemLoader, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from models.hold import Hold
from models.invoice import InvoiceDocument
from models.result import MatchResult
from .normalize import format_currency

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent.parent / "config"

_HOLD_COLOR = "D13438"
_VARIANCE_COLOR = "FFB900"


class Notifier(Protocol):
    def hold_created(self, document: InvoiceDocument, hold: Hold) -> None:
        ...

    def variance_alert(self, document: InvoiceDocument, match: MatchResult) -> None:
        ...


def _amount(cents: Optional[int]) -> str:
    return format_currency(cents) if cents is not None else "n/a"


class TeamsNotifier:
    """Renders a MessageCard with Jinja2 and POSTs it to a Teams webhook."""

    def __init__(
        self,
        webhook_url: Optional[str],
        template_name: str = "teams_card.json.j2",
        template_dir: Optional[Path] = None,
        admin_ui_url: str = "http://localhost:3000",
        timeout: int = 30,
    ) -> None:
        self.webhook_url = webhook_url
        self.template_name = template_name
        self.template_dir = Path(template_dir or _DEFAULT_TEMPLATE_DIR)
        self.admin_ui_url = admin_ui_url.rstrip("/")
        self.timeout = timeout

        self.jinja_env = SandboxedEnvironment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            keep_trailing_newline=True,
        )

    @classmethod
    def from_config(cls, config: Any) -> "TeamsNotifier":
        template_dir = Path(os.getenv("CONFIG_DIR", str(_DEFAULT_TEMPLATE_DIR)))
        return cls(
            webhook_url=config.teams_webhook_url,
            template_name=config.notification_template,
            template_dir=template_dir,
            admin_ui_url=config.admin_ui_url,
        )

    # ------------------------------------------------------------------
    # Notifier API
    # ------------------------------------------------------------------

    def hold_created(self, document: InvoiceDocument, hold: Hold) -> None:
        facts = [
            ("Supplier", document.supplier_name_raw or "unknown"),
            ("Invoice #", document.invoice_number or "n/a"),
            ("Amount", _amount(document.total)),
            ("PO", document.po_number_raw or "none"),
            ("Reason", hold.reason),
            ("Details", hold.details),
        ]
        self.send(
            title=f"Invoice on hold: {hold.reason}",
            subtitle=document.supplier_name_raw or document.id,
            facts=facts,
            theme_color=_HOLD_COLOR,
            link=f"{self.admin_ui_url}/holds/{hold.id}",
        )

    def variance_alert(self, document: InvoiceDocument, match: MatchResult) -> None:
        facts = [
            ("Supplier", document.supplier_name_raw or "unknown"),
            ("Invoice #", document.invoice_number or "n/a"),
            ("Amount", _amount(document.total)),
            ("PO", match.po_number or "none"),
            ("Variance", format_currency(match.variance)),
            ("Action", match.action),
        ]
        self.send(
            title="Bill drafted: variance needs approval",
            subtitle=document.supplier_name_raw or document.id,
            facts=facts,
            theme_color=_VARIANCE_COLOR,
            link=f"{self.admin_ui_url}/documents/{document.id}",
        )

    # ------------------------------------------------------------------
    # Rendering and delivery
    # ------------------------------------------------------------------

    def render_card(
        self,
        title: str,
        subtitle: str,
        facts: list[tuple[str, str]],
        theme_color: str,
        link: str,
    ) -> dict:
        """Render the card template and parse it, so malformed output fails here."""
        template = self.jinja_env.get_template(self.template_name)
        rendered = template.render(
            title=title,
            subtitle=subtitle,
            summary=title,
            facts=facts,
            theme_color=theme_color,
            admin_url=link,
        )
        return json.loads(rendered)

    def send(
        self,
        title: str,
        subtitle: str,
        facts: list[tuple[str, str]],
        theme_color: str,
        link: str,
    ) -> dict[str, Any]:
        """
        Deliver one card.  Returns a dict describing the result (status,
        status_code, error) suitable for logging or auditing.
        """
        if not self.webhook_url:
            logger.info("Notification (no webhook configured): %s | %s", title, dict(facts))
            return {"status": "skipped", "reason": "TEAMS_WEBHOOK_URL not configured"}

        try:
            card = self.render_card(title, subtitle, facts, theme_color, link)
        except Exception as e:
            logger.error("Failed to render notification template %s: %s", self.template_name, e)
            return {"status": "failed", "error": f"Template rendering failed: {e}"}

        req = urllib.request.Request(
            self.webhook_url,
            data=json.dumps(card).encode("utf-8"),
            method="POST",
        )
        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("User-Agent", "apmatch-notifier/1.0")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                status_code = response.getcode()
                logger.info("Notification sent (%s): HTTP %d", title, status_code)
                return {"status": "success", "status_code": status_code}
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if e.fp else str(e)
            logger.error("Notification failed (%s): HTTP %d - %s", title, e.code, body)
            return {"status": "failed", "status_code": e.code, "error": body[:500]}
        except Exception as e:
            logger.error("Notification error (%s): %s", title, e)
            return {"status": "failed", "error": str(e)}
