"""
Stealth override manager.

Makes the renderer present an alternate network identity and hides the
navigator-level automation tells, scoped to one crawl run:

1. attach the renderer's low-level control channel
2. override user agent / accept-language / platform at the network layer
3. install a navigator override script that runs before every new document
4. re-apply the same script after each load, for documents that refused (3)

Every step is best-effort. A failed step is logged and recorded in
``StealthManager.failures``; it never aborts the crawl.
"""

import json
import logging
from typing import Any, List, Optional

from crawlite.errors import OverrideFailedError
from crawlite.models import StealthOverrideSpec
from crawlite.renderer.base import PageRenderer

logger = logging.getLogger(__name__)


# Navigator overrides; each runs in its own try so one refused property
# does not prevent the others
STEALTH_SCRIPTS = {
    "webdriver": """
    try {
      Object.defineProperty(Navigator.prototype, 'webdriver', { get: () => false, configurable: true });
    } catch (e) {}
    """,
    "languages": """
    try {
      Object.defineProperty(Navigator.prototype, 'language', { get: () => %(language)s, configurable: true });
      Object.defineProperty(Navigator.prototype, 'languages', { get: () => [%(language)s], configurable: true });
    } catch (e) {}
    """,
    "platform": """
    try {
      Object.defineProperty(Navigator.prototype, 'platform', { get: () => %(platform)s, configurable: true });
    } catch (e) {}
    """,
}


def primary_language(accept_language: Optional[str]) -> str:
    """Return the first language tag of an Accept-Language value.

    >>> primary_language("de-DE,de;q=0.9,en;q=0.8")
    'de-DE'
    """
    if not accept_language:
        return ""
    first = accept_language.split(",", 1)[0]
    return first.split(";", 1)[0].strip()


def build_stealth_script(spec: StealthOverrideSpec) -> str:
    """
    Build the navigator override script for a spec.

    Args:
        spec: Stealth overrides for the run

    Returns:
        Self-invoking script source, or "" when nothing needs overriding
    """
    parts: List[str] = []

    if spec.suppress_automation_signal:
        parts.append(STEALTH_SCRIPTS["webdriver"])

    language = primary_language(spec.accept_language)
    if language:
        parts.append(STEALTH_SCRIPTS["languages"] % {"language": json.dumps(language)})

    if spec.platform:
        parts.append(STEALTH_SCRIPTS["platform"] % {"platform": json.dumps(spec.platform)})

    if not parts:
        return ""
    return "(() => {" + "".join(parts) + "})();"


class StealthManager:
    """
    Installs and removes one run's stealth overrides on a renderer.

    ``begin`` and ``end`` bracket a run; ``end`` is idempotent and safe after
    a partially failed ``begin``.
    """

    def __init__(self, renderer: PageRenderer):
        self._renderer = renderer
        self._spec: Optional[StealthOverrideSpec] = None
        self._script = ""
        self._script_handle: Any = None
        self._attached_by_us = False
        self._identity_installed = False
        self.failures: List[OverrideFailedError] = []

    @property
    def active(self) -> bool:
        return self._spec is not None

    @property
    def script(self) -> str:
        """Navigator override script of the active run ("" when none)."""
        return self._script

    def _record_failure(self, step: str, error: Exception) -> None:
        failure = OverrideFailedError(step, str(error))
        self.failures.append(failure)
        logger.debug(f"{failure}")

    async def begin(self, spec: StealthOverrideSpec) -> None:
        """
        Install overrides for a run.

        Args:
            spec: Stealth overrides; an empty spec installs nothing
        """
        if spec.is_empty():
            return

        self._spec = spec
        self._script = build_stealth_script(spec)

        if not self._renderer.control_channel_attached:
            try:
                await self._renderer.attach_control_channel()
                self._attached_by_us = True
            except Exception as e:
                # Network and pre-document overrides need the channel; only
                # post-load re-application is left
                self._record_failure("attach", e)
                return

        if spec.user_agent or spec.accept_language or spec.platform:
            try:
                await self._renderer.set_identity_override(
                    user_agent=spec.user_agent,
                    accept_language=spec.accept_language,
                    platform=spec.platform,
                )
                self._identity_installed = True
            except Exception as e:
                self._record_failure("identity", e)

        if not self._script:
            return

        if self._script_handle is not None:
            try:
                await self._renderer.remove_init_script(self._script_handle)
            except Exception as e:
                self._record_failure("remove_stale_script", e)
            self._script_handle = None

        try:
            self._script_handle = await self._renderer.add_init_script(self._script)
        except Exception as e:
            self._record_failure("init_script", e)

        logger.debug(
            f"Stealth overrides installed (identity={self._identity_installed}, "
            f"init_script={self._script_handle is not None})"
        )

    async def reapply(self) -> None:
        """Re-apply navigator overrides to the loaded document."""
        if not self._script:
            return
        try:
            await self._renderer.evaluate(self._script)
        except Exception as e:
            self._record_failure("reapply", e)

    async def end(self) -> None:
        """Remove all overrides installed by ``begin``."""
        if self._script_handle is not None:
            try:
                await self._renderer.remove_init_script(self._script_handle)
            except Exception as e:
                self._record_failure("remove_script", e)
            self._script_handle = None

        if self._identity_installed:
            try:
                await self._renderer.set_identity_override()
            except Exception as e:
                self._record_failure("reset_identity", e)
            self._identity_installed = False

        if self._attached_by_us:
            try:
                await self._renderer.detach_control_channel()
            except Exception as e:
                self._record_failure("detach", e)
            self._attached_by_us = False

        self._spec = None
        self._script = ""
