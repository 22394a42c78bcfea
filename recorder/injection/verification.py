"""Presence probes for the recorder payload.

Page state is never shared with the host; it is observed by running a small
probe script through the driver and reading back two markers: the global
active flag and the indicator element.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from ..capture.driver import BrowserDriver
from ..payload import markers

logger = logging.getLogger(__name__)


PROBE_SCRIPT = """
(m) => ({
  installed: window[m.activeFlag] === true,
  uiPresent: !!document.getElementById(m.indicatorId)
})
"""


@dataclass
class PresenceProbe:
    """Result of reading the payload markers from a page."""
    installed: bool = False
    ui_present: bool = False

    @property
    def present(self) -> bool:
        """Either marker is enough to consider the payload present."""
        return self.installed or self.ui_present

    @property
    def complete(self) -> bool:
        return self.installed and self.ui_present

    @classmethod
    def from_page(cls, value: Any) -> 'PresenceProbe':
        if not isinstance(value, dict):
            return cls()
        return cls(
            installed=bool(value.get('installed')),
            ui_present=bool(value.get('uiPresent')),
        )


def probe_arguments() -> Dict[str, str]:
    return {
        'activeFlag': markers.ACTIVE_FLAG,
        'indicatorId': markers.INDICATOR_ID,
    }


async def probe(driver: BrowserDriver) -> PresenceProbe:
    """Read both payload markers from the page.

    Raises:
        DriverError: If the probe script could not run
    """
    result = await driver.run_script(PROBE_SCRIPT, probe_arguments())
    presence = PresenceProbe.from_page(result)
    logger.debug(f"Presence probe: installed={presence.installed}, ui={presence.ui_present}")
    return presence
