"""
License document rendering — sanitized context, Jinja2 HTML, xhtml2pdf.

Uploaded templates and the built-in template share one sandboxed,
autoescaping environment, so interpolated customer text can never become
markup.
"""

import re
import unicodedata
from io import BytesIO
from typing import Any

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment
from xhtml2pdf import pisa

NAME_LIMIT = 120
TITLE_LIMIT = 200
EMAIL_LIMIT = 254

_WHITESPACE = re.compile(r"\s+")

# reportlab base fonts have no glyphs for these
REPLACEMENTS = {
    "\u2013": "-",  # en dash
    "\u2014": "-",  # em dash
    "\u2212": "-",  # minus sign
    "\u00A0": " ",  # nbsp
    "\u2018": "'",
    "\u2019": "'",
    "\u201C": "\"",
    "\u201D": "\"",
    "\u2022": "*",  # bullet
    "\u2026": "...",
}

env = SandboxedEnvironment(autoescape=True)


def clean_text(value: str | None, limit: int) -> str:
    """Collapse whitespace, strip control/format characters, cap length."""
    if not value:
        return ""
    collapsed = _WHITESPACE.sub(" ", value)
    printable = "".join(
        ch for ch in collapsed
        if unicodedata.category(ch) not in ("Cc", "Cf", "Cs", "Co", "Cn")
    ).strip()
    if len(printable) <= limit:
        return printable
    return printable[: limit - 3].rstrip() + "..."


def render_html(template_source: str, context: dict[str, Any]) -> str:
    """Render a template source; raises jinja2.TemplateError on bad templates."""
    return env.from_string(template_source).render(**context)


def render_pdf(html: str) -> bytes:
    """HTML -> PDF bytes. Blocking: call it off the event loop."""
    for char, replacement in REPLACEMENTS.items():
        html = html.replace(char, replacement)
    out = BytesIO()
    result = pisa.CreatePDF(src=html, dest=out, encoding="utf-8")
    if result.err:
        raise RuntimeError(f"xhtml2pdf reported {result.err} error(s)")
    return out.getvalue()


BUILTIN_TEMPLATE = """\
<html>
<head>
<style>
  @page { size: letter; margin: 2cm; }
  body { font-family: Helvetica; font-size: 10pt; color: #222222; }
  h1 { font-size: 20pt; text-align: center; margin-bottom: 4pt; }
  h2 { font-size: 12pt; margin-top: 14pt; border-bottom: 1px solid #999999; }
  .subtitle { text-align: center; color: #555555; }
  .footer { margin-top: 24pt; font-size: 8pt; color: #777777; text-align: center; }
</style>
</head>
<body>
  <h1>{{ document_title }}</h1>
  <p class="subtitle">{{ rights.description }}</p>

  <p><b>Effective Date:</b> {{ effective_date }}</p>

  <h2>BETWEEN</h2>
  <p><b>Producer (Licensor):</b> {{ licensor }}</p>
  <p><b>Licensee:</b> {{ licensee_name }}<br/><b>Email:</b> {{ licensee_email }}</p>

  <h2>LICENSED WORK</h2>
  <p>
    <b>Title:</b> {{ title }}<br/>
    {% if bpm %}<b>BPM:</b> {{ bpm }}<br/>{% endif %}
    {% if genre %}<b>Genre:</b> {{ genre }}<br/>{% endif %}
    <b>License Type:</b> {{ license_name }}<br/>
    <b>Purchase Price:</b> {{ price }}<br/>
    <b>Order Reference:</b> {{ order_id }}
  </p>

  <h2>RIGHTS GRANTED</h2>
  <ul>
  {% for bullet in rights_granted %}
    <li>{{ bullet }}</li>
  {% endfor %}
  </ul>

  <h2>TERMS AND CONDITIONS</h2>
  <ol>
    <li>Credit: the Licensee must credit the Producer as "Prod. by {{ licensor }}" in all releases.</li>
    <li>Ownership: the Producer retains ownership of the composition{% if not rights.exclusive %}; this license grants usage rights only{% endif %}.</li>
    <li>Transfer: this license is non-transferable and may not be resold or sublicensed.</li>
    <li>Modifications: the Licensee may arrange, edit and record over the work, but may not claim the underlying composition.</li>
    <li>Limits: use beyond {{ rights.stream_limit }} streams/sales requires an upgraded license.</li>
  </ol>

  <p class="footer">Generated {{ generated_at }} &middot; Order {{ order_id }} &middot; Item {{ order_item_id }}</p>
</body>
</html>
"""


__all__ = (
    "NAME_LIMIT",
    "TITLE_LIMIT",
    "EMAIL_LIMIT",
    "clean_text",
    "render_html",
    "render_pdf",
    "BUILTIN_TEMPLATE",
    "TemplateError",
)
