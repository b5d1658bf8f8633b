"""Notification template rendering.

Templates use ``{name}`` placeholders. Known variables are substituted;
unknown placeholders are left verbatim, and braces that are not a simple
``{word}`` (JSON bodies, for instance) are never touched. That rules out
``str.format``, which would raise on both.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

from grainwatch.models.trigger import DEFAULT_LOCALE

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def render(text: str, variables: Mapping[str, str]) -> str:
    """Substitute ``{name}`` placeholders found in *variables*."""

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables:
            return variables[name]
        return match.group(0)

    return _PLACEHOLDER.sub(_sub, text)


def pick_locale(
    texts: Optional[Mapping[str, str]],
    locale: Optional[str],
    default_locale: str = DEFAULT_LOCALE,
) -> Optional[str]:
    """Choose a localisation: requested, then default, then ``en``, then any."""
    if not texts:
        return None
    for candidate in (locale, default_locale, DEFAULT_LOCALE):
        if candidate and texts.get(candidate):
            return texts[candidate]
    for text in texts.values():
        if text:
            return text
    return None
