"""`{{placeholder}}` rendering for notification templates."""

import re
from typing import Any, Mapping


PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def render(template: str | None, variables: Mapping[str, Any]) -> str:
    """Substitute `{{key}}` placeholders from `variables`.

    Missing or `None` values keep the literal placeholder so one absent field
    never blocks the whole message.
    """

    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return PLACEHOLDER_RE.sub(_replace, template)


def preview(channel: str, rendered: Mapping[str, str]) -> str:
    """Short human-readable preview stored on notification logs."""

    if channel == "whatsapp":
        return rendered.get("whatsapp_message", "")[:200]
    return f"{rendered.get('email_subject', '')}: {rendered.get('email_body', '')[:150]}"
