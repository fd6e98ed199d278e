"""
Email template registry.

Templates live in app/templates/email as `<name>.html` / `<name>.txt` pairs.
Lookup is strict: a name that is not registered raises UnknownTemplateError
instead of falling back to some other template, since the wrong template
could show a customer the wrong prices or terms.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.exceptions import UnknownTemplateError

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

TEMPLATE_NAMES = frozenset({
    'quote',
    'welcome',
    'reservation-confirmation',
    'order-confirmation',
    'booking-received',
})

_html_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)
_text_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=False,
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class RenderedEmail:
    html: str
    text: str


def render_email(name: str, context: Mapping[str, Any]) -> RenderedEmail:
    """
    Render both bodies of a registered template.

    Raises:
        UnknownTemplateError: `name` is not in TEMPLATE_NAMES.
    """
    if name not in TEMPLATE_NAMES:
        raise UnknownTemplateError(name)
    html = _html_env.get_template(f"{name}.html").render(**context)
    text = _text_env.get_template(f"{name}.txt").render(**context)
    return RenderedEmail(html=html, text=text)
