"""Notification pipeline - renders templates and hands them to the mail transport."""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple

import markdown
from jinja2 import TemplateError

from .. import metrics
from ..models import AlertDefinition, TargetRegistry
from .email_sender import EmailSenderService
from .templates import DEFAULT_SUBJECT, render

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["extra", "sane_lists"]


@dataclass
class RenderedNotification:
    """One target's notification, ready for the transport."""
    target_id: str
    addresses: Tuple[str, ...]
    subject: str
    text: str
    html: str


def to_html(body: str) -> str:
    """Convert a Markdown body to HTML. Raw HTML passes through unchanged."""
    return markdown.markdown(body, extensions=MARKDOWN_EXTENSIONS)


class NotificationPipeline:
    """Renders and dispatches an alert's notifications, one target at a time.

    A failure for one target (template error, unknown target, transport
    error) is logged and the remaining targets are still attempted.
    """

    def __init__(
        self,
        sender: Optional[EmailSenderService] = None,
        dry_run: bool = False,
        echo: Callable[[str], None] = print,
    ):
        self.sender = sender or EmailSenderService()
        self.dry_run = dry_run
        self.echo = echo

    def render(
        self,
        definition: AlertDefinition,
        registry: TargetRegistry,
        context: Mapping[str, Any],
    ) -> List[RenderedNotification]:
        """Render every send entry that resolves and renders cleanly."""
        rendered = []
        for spec in definition.send:
            target = registry.get(spec.target_id)
            if target is None:
                logger.error(f"Target '{spec.target_id}' of {definition.path} not found, skipping")
                continue

            ctx = dict(context)
            try:
                subject = render(spec.subject_template or DEFAULT_SUBJECT, ctx).strip()
                ctx["subject"] = subject
                body = render(spec.body_template, ctx)
            except TemplateError as e:
                logger.error(f"Template error for {definition.path} -> {spec.target_id}: {e}")
                continue

            rendered.append(RenderedNotification(
                target_id=target.id,
                addresses=target.addresses,
                subject=subject,
                text=body,
                html=to_html(body),
            ))
        return rendered

    async def dispatch(
        self,
        definition: AlertDefinition,
        registry: TargetRegistry,
        context: Mapping[str, Any],
    ) -> int:
        """Render and send an alert's notifications.

        Returns:
            Number of targets that were delivered to
        """
        delivered = 0
        for notification in self.render(definition, registry, context):
            if self.dry_run:
                self.echo(self._format_dry_run(definition, notification))
                delivered += 1
                continue

            try:
                ok = await self.sender.send_email(
                    notification.addresses,
                    notification.subject,
                    notification.text,
                    notification.html,
                )
            except Exception as e:
                logger.error(f"Delivery to '{notification.target_id}' failed for {definition.path}: {e}")
                metrics.alerts_failed.inc()
                continue

            if ok:
                delivered += 1
                metrics.alerts_sent.inc()
            else:
                metrics.alerts_failed.inc()
                logger.error(f"Delivery to '{notification.target_id}' failed for {definition.path}")

        logger.info(f"Dispatched {definition.path}: {delivered}/{len(definition.send)} targets")
        return delivered

    def _format_dry_run(self, definition: AlertDefinition, notification: RenderedNotification) -> str:
        return "\n".join([
            "-" * 60,
            f"Alert:   {definition.path}",
            f"Target:  {notification.target_id} ({', '.join(notification.addresses)})",
            f"Subject: {notification.subject}",
            "",
            notification.html,
        ])
