"""Jinja2 rendering of templated notification content."""

from typing import Any

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from notifyq.db.models import NotificationTemplate
from notifyq.errors import ValidationError
from notifyq.schemas import TITLE_MAX_LENGTH

# Titles and messages are plain text; channel adapters escape for their
# own transport where needed.
_env = SandboxedEnvironment(
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=False,
)


def render_template(template_str: str, context: dict[str, Any]) -> str:
    """Render a template string; missing variables raise UndefinedError."""
    return _env.from_string(template_str).render(context)


def render_notification(
    template: NotificationTemplate, context: dict[str, Any]
) -> tuple[str, str]:
    """Render (title, message) from a stored template.

    Raises ValidationError when the template references a variable the
    context does not provide, or the rendered title is too long.
    """
    try:
        title = render_template(template.title_template, context).strip()
        message = render_template(template.body_template, context)
    except TemplateError as exc:
        raise ValidationError(
            f"Template {template.name!r} could not be rendered: {exc}"
        ) from exc

    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(
            f"Rendered title exceeds {TITLE_MAX_LENGTH} characters"
        )
    return title, message
