"""Short human labels for versions.

Uses an LLM through LiteLLM when a model is configured; otherwise, or on
any failure, derives the label from the changed file set.
"""

import logging
import posixpath
from typing import Iterable, List, Optional, Tuple

from ..core.config import settings

logger = logging.getLogger(__name__)

MAX_DISPLAY_NAME_LENGTH = 60

SYSTEM_PROMPT = (
    "You name versions of a small web application. "
    "Given the list of changed files, reply with a short label (at most 6 words) "
    "describing the change, e.g. 'Add contact form' or 'Restyle landing page'. "
    "Reply with the label only."
)


def _plural(count: int) -> str:
    return f"{count} file" if count == 1 else f"{count} files"


def fallback_display_name(changes: Iterable[Tuple[str, str]]) -> str:
    """Deterministic label from ``(path, action)`` pairs."""
    changes = list(changes)
    if not changes:
        return "Initial version"

    actions = {action for _, action in changes}
    if actions == {"restored"}:
        return f"Restore {_plural(len(changes))}"

    if len(changes) == 1:
        path, action = changes[0]
        name = posixpath.basename(path) or path
        if action == "created":
            return f"Creating {name}"
        if action == "deleted":
            return f"Delete {name}"
        return f"Update {name}"

    if actions == {"created"}:
        return f"Create {_plural(len(changes))}"
    if actions == {"deleted"}:
        return f"Delete {_plural(len(changes))}"
    return f"Update {_plural(len(changes))}"


class DisplayNameService:
    """Best-effort version naming."""

    @staticmethod
    def is_configured() -> bool:
        return bool(settings.display_name_model)

    def label(
        self,
        changes: List[Tuple[str, str]],
        changelog: Optional[str] = None,
        version_id: Optional[int] = None,
    ) -> str:
        """Label for a set of ``(path, action)`` changes. Never raises.

        Takes plain values so callers can release their database
        transaction before the model is called.
        """
        fallback = fallback_display_name(changes)

        if not self.is_configured() or not changes:
            return fallback

        try:
            label = self._complete(changes, changelog)
        except Exception:
            logger.exception("Display name generation failed", extra={"version_id": version_id})
            return fallback

        lines = (label or "").strip().splitlines()
        label = lines[0].strip().strip("\"'").strip() if lines else ""
        if not label:
            return fallback
        return label[:MAX_DISPLAY_NAME_LENGTH]

    def _complete(self, changes: List[Tuple[str, str]], changelog) -> str:
        import litellm

        listing = "\n".join(f"- {action}: {path}" for path, action in changes[:50])
        user_content = f"Changed files:\n{listing}"
        if changelog:
            user_content += f"\n\nAuthor note: {changelog[:500]}"

        kwargs: dict = {
            "model": settings.display_name_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
            "max_tokens": 30,
            "temperature": 0.2,
            "timeout": 15,
        }
        if settings.display_name_api_key:
            kwargs["api_key"] = settings.display_name_api_key
        if settings.display_name_api_base:
            kwargs["api_base"] = settings.display_name_api_base

        response = litellm.completion(**kwargs)
        return response.choices[0].message.content
