"""
Notification Dispatcher

Turns the items materialized for one owner into a summary email:
an itemized table plus the net signed total of the batch.

CRITICAL: notify() never raises. Every failure (delivery error,
timeout, missing address) comes back as a failed NotificationOutcome
so a bad mailbox cannot abort the recurring run.
"""

import asyncio
from decimal import Decimal
from html import escape
from typing import Optional, Sequence

import structlog

from src.config import get_settings
from src.models.budget import BudgetItem, ItemKind, NotificationOutcome
from src.services.notification.email_sender import EmailSenderInterface


def format_amount(amount: Decimal) -> str:
    """1234567.5 -> '1,234,567.50'"""
    return f"{amount:,.2f}"


def net_total(items: Sequence[BudgetItem]) -> Decimal:
    """Income adds, expense subtracts."""
    return sum((item.signed_amount for item in items), Decimal("0"))


class NotificationDispatcher:
    """Builds and delivers the 'new recurring items' email for one owner."""

    def __init__(
        self,
        sender: EmailSenderInterface,
        currency_label: Optional[str] = None,
        subject: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        app = get_settings().app
        self._sender = sender
        self._currency = currency_label or app.currency_label
        self._subject = subject or app.notification_subject
        self._timeout = timeout_seconds or app.notification_timeout_seconds
        self._logger = structlog.get_logger()

    def render_text(self, items: Sequence[BudgetItem]) -> str:
        lines = [
            "The following recurring budget items have been automatically "
            "added to your budget:",
            "",
        ]
        for item in items:
            lines.append(
                f"- {item.name}: {self._currency} {format_amount(item.amount)} "
                f"({item.kind.value}, {item.category}, {item.recurrence_rule.value})"
            )
        lines.append("")
        lines.append(f"Net Impact: {self._net_label(net_total(items))}")
        return "\n".join(lines)

    def render_html(self, items: Sequence[BudgetItem]) -> str:
        cell = 'style="padding: 8px; border: 1px solid #ddd;"'
        rows = []
        for item in items:
            color = "#16a34a" if item.kind == ItemKind.INCOME else "#dc2626"
            rows.append(
                "<tr>"
                f"<td {cell}>{escape(item.name)}</td>"
                f"<td {cell}>{self._currency} {format_amount(item.amount)}</td>"
                f'<td {cell}><span style="color: {color};">'
                f"{item.kind.value.capitalize()}</span></td>"
                f"<td {cell}>{escape(item.category)}</td>"
                f"<td {cell}>{item.recurrence_rule.value}</td>"
                "</tr>"
            )

        total = net_total(items)
        total_color = "#16a34a" if total >= 0 else "#dc2626"
        headers = "".join(
            f"<th {cell}>{h}</th>"
            for h in ("Name", "Amount", "Type", "Category", "Recurrence")
        )
        return (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f'<h2 style="color: #333;">{escape(self._subject)}</h2>'
            "<p>The following recurring budget items have been automatically "
            "added to your budget:</p>"
            '<table style="width: 100%; border-collapse: collapse; margin-top: 20px;">'
            f'<thead><tr style="background-color: #f3f4f6;">{headers}</tr></thead>'
            f"<tbody>{''.join(rows)}</tbody>"
            "</table>"
            '<p style="margin-top: 20px; font-weight: bold;">Net Impact: '
            f'<span style="color: {total_color};">{self._net_label(total)}</span></p>'
            '<p style="margin-top: 20px; color: #666;">'
            "This is an automated notification from your budget management system.</p>"
            "</div>"
        )

    def _net_label(self, total: Decimal) -> str:
        direction = "Positive" if total >= 0 else "Negative"
        return f"{self._currency} {format_amount(abs(total))} ({direction})"

    async def notify(
        self,
        owner_email: Optional[str],
        new_items: Sequence[BudgetItem],
        owner_id: Optional[str] = None,
    ) -> NotificationOutcome:
        """
        Email one owner about their new items.

        Returns:
            NotificationOutcome with success=False and a reason on any failure
        """
        count = len(new_items)
        if not owner_email:
            return NotificationOutcome(
                owner_id=owner_id,
                success=False,
                item_count=count,
                reason="No email address on file",
            )
        if not new_items:
            return NotificationOutcome(
                owner_id=owner_id,
                email=owner_email,
                success=False,
                reason="Nothing to notify",
            )

        try:
            await asyncio.wait_for(
                self._sender.send(
                    owner_email,
                    self._subject,
                    self.render_html(new_items),
                    self.render_text(new_items),
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            reason = f"Delivery timed out after {self._timeout}s"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
        else:
            return NotificationOutcome(
                owner_id=owner_id,
                email=owner_email,
                success=True,
                item_count=count,
            )

        self._logger.warning(
            "notification_failed",
            owner_id=owner_id,
            reason=reason,
        )
        return NotificationOutcome(
            owner_id=owner_id,
            email=owner_email,
            success=False,
            item_count=count,
            reason=reason,
        )
