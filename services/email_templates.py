"""Rendering of solicitation emails and HTML to text conversion."""

from __future__ import annotations

from html import escape
from html.parser import HTMLParser
from typing import Any, List, Mapping, Optional

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .header { background: #4F46E5; color: white; padding: 20px; }
    .content { padding: 20px; }
    .section { margin-bottom: 20px; }
    .label { font-weight: bold; color: #4F46E5; }
    table { width: 100%; border-collapse: collapse; margin-top: 10px; }
    th, td { padding: 10px; text-align: left; border-bottom: 1px solid #ddd; }
    th { background: #f4f4f4; }
"""

REPLY_CHECKLIST = (
    "Detailed pricing breakdown",
    "Delivery timeline",
    "Payment terms",
    "Warranty information",
    "Any additional terms or conditions",
)


class _BodyHTMLStripper(HTMLParser):
    _SKIPPED_TAGS = {"style", "script", "head", "title"}

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: List[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self._SKIPPED_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag):
        if tag in self._SKIPPED_TAGS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if data and not self._skip_depth:
            self._parts.append(data)

    def text(self, separator: str) -> str:
        return separator.join(part.strip() for part in self._parts if part.strip())


def html_to_text(html: Optional[str], *, separator: str = "\n") -> str:
    """Strip tags from ``html``, dropping style and script contents."""

    if not html:
        return ""
    parser = _BodyHTMLStripper()
    parser.feed(html)
    parser.close()
    return parser.text(separator)


def rfp_subject(title: str) -> str:
    return f"RFP: {title}"


def _format_budget(value: Any) -> str:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return str(value)
    if amount.is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def _section(label: str, value: Any) -> str:
    return (
        '<div class="section">'
        f'<div class="label">{escape(label)}:</div>'
        f"<div>{escape(str(value))}</div>"
        "</div>"
    )


def _fmt_quantity(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return "" if value is None else str(value)


def render_rfp_email(solicitation: Mapping[str, Any], vendor_name: str) -> str:
    """Render the invitation sent to ``vendor_name``.

    ``solicitation`` uses the camelCase keys of the solicitation context
    (``title``, ``deliveryTimeline``, ``items`` and so on).  Every
    interpolated value is HTML escaped.
    """

    rows = []
    for item in solicitation.get("items") or []:
        rows.append(
            "<tr>"
            f"<td>{escape(str(item.get('name') or ''))}</td>"
            f"<td>{escape(_fmt_quantity(item.get('quantity')))}</td>"
            f"<td>{escape(str(item.get('specifications') or ''))}</td>"
            "</tr>"
        )

    optional_sections = []
    for label, key in (
        ("Payment Terms", "paymentTerms"),
        ("Warranty Requirements", "warrantyRequirements"),
        ("Additional Requirements", "additionalRequirements"),
    ):
        if solicitation.get(key):
            optional_sections.append(_section(label, solicitation[key]))

    checklist = "".join(f"<li>{escape(entry)}</li>" for entry in REPLY_CHECKLIST)

    return (
        "<!DOCTYPE html>"
        "<html>"
        f"<head><style>{_STYLE}</style></head>"
        "<body>"
        '<div class="header"><h1>Request for Proposal</h1></div>'
        '<div class="content">'
        f"<p>Dear {escape(vendor_name)},</p>"
        "<p>We invite you to submit a proposal for the following requirement:</p>"
        + _section("Title", solicitation.get("title", ""))
        + _section("Description", solicitation.get("description", ""))
        + _section("Budget", _format_budget(solicitation.get("budget")))
        + _section("Delivery Timeline", solicitation.get("deliveryTimeline", ""))
        + '<div class="section">'
        '<div class="label">Items Required:</div>'
        "<table><thead><tr><th>Item</th><th>Quantity</th><th>Specifications</th></tr></thead>"
        f"<tbody>{''.join(rows)}</tbody></table>"
        "</div>"
        + "".join(optional_sections)
        + "<p><strong>Please reply to this email with your proposal including:</strong></p>"
        f"<ul>{checklist}</ul>"
        "<p>We look forward to receiving your proposal.</p>"
        "<p>Best regards,<br>Procurement Team</p>"
        "</div>"
        "</body>"
        "</html>"
    )


__all__ = ["REPLY_CHECKLIST", "html_to_text", "render_rfp_email", "rfp_subject"]
