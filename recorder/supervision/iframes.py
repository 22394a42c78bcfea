"""Propagation of the recorder into same-origin iframes.

The parent document is the only context the driver talks to. Frames are
reached through ``contentWindow``/``contentDocument`` from parent script,
which only works for same-origin frames. Cross-origin frames are reported as
a distinct outcome and never counted as failures.
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List

from ..capture.driver import BrowserDriver, DriverError, SessionUnreachableError
from ..payload import PayloadOptions, build_frame_payload, markers

logger = logging.getLogger(__name__)


FRAME_ACCESS_SCRIPT = """
(args) => {
  var frame = document.querySelector(args.selector);
  if (!frame) { return { found: false }; }
  var doc = null;
  try {
    doc = frame.contentDocument || (frame.contentWindow && frame.contentWindow.document) || null;
  } catch (err) {
    doc = null;
  }
  if (!doc) { return { found: true, accessible: false, src: frame.src || '' }; }
  var instrumented = false;
  try { instrumented = frame.contentWindow[args.activeFlag] === true; } catch (err) { instrumented = false; }
  return {
    found: true,
    accessible: true,
    instrumented: instrumented,
    src: frame.src || '',
    url: doc.location ? doc.location.href : ''
  };
}
"""

FRAME_INJECT_SCRIPT = """
(args) => {
  var frame = document.querySelector(args.selector);
  if (!frame) { throw new Error('iframe not found: ' + args.selector); }
  var win = frame.contentWindow;
  var doc = frame.contentDocument || win.document;
  var previous = doc.getElementById(args.scriptId);
  if (previous && previous.parentNode) { previous.parentNode.removeChild(previous); }
  var script = doc.createElement('script');
  script.id = args.scriptId;
  script.text = args.source;
  (doc.head || doc.documentElement).appendChild(script);
  if (win[args.activeFlag] === true) { return 'script_element'; }
  win.Function('return ' + args.source)();
  return win[args.activeFlag] === true ? 'function' : 'none';
}
"""

FRAME_LIST_SCRIPT = """
(args) => {
  var frames = document.getElementsByTagName('iframe');
  var found = [];
  for (var i = 0; i < frames.length; i++) {
    var frame = frames[i];
    var id = frame.getAttribute(args.frameAttr);
    if (!id) {
      window.__rsFrameSeq = (window.__rsFrameSeq || 0) + 1;
      id = String(window.__rsFrameSeq);
      frame.setAttribute(args.frameAttr, id);
    }
    found.push('iframe[' + args.frameAttr + '="' + id + '"]');
  }
  return found;
}
"""


class IframeOutcome(str, Enum):
    """Result of trying to instrument one iframe."""
    INSTRUMENTED = "instrumented"
    ALREADY_INSTRUMENTED = "already_instrumented"
    CROSS_ORIGIN = "cross_origin"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class IframeStats:
    """Per-session iframe outcome counters."""
    instrumented: int = 0
    already_instrumented: int = 0
    cross_origin: int = 0
    not_found: int = 0
    failed: int = 0

    def record(self, outcome: IframeOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class IframePropagator:
    """Installs the reduced payload into same-origin iframes."""

    def __init__(self):
        self._stats: Dict[str, IframeStats] = {}

    def stats(self, session_id: str) -> IframeStats:
        return self._stats.setdefault(session_id, IframeStats())

    def forget(self, session_id: str) -> None:
        self._stats.pop(session_id, None)

    async def _access(self, driver: BrowserDriver, selector: str) -> Dict[str, Any]:
        result = await driver.run_script(FRAME_ACCESS_SCRIPT, {
            'selector': selector,
            'activeFlag': markers.ACTIVE_FLAG,
        })
        return result if isinstance(result, dict) else {}

    async def instrument(
        self,
        driver: BrowserDriver,
        session_id: str,
        selector: str,
        options: PayloadOptions,
    ) -> IframeOutcome:
        """Instrument the iframe matched by ``selector``.

        Raises:
            SessionUnreachableError: If the tab is gone
        """
        outcome = await self._instrument(driver, session_id, selector, options)
        self.stats(session_id).record(outcome)
        return outcome

    async def _instrument(
        self,
        driver: BrowserDriver,
        session_id: str,
        selector: str,
        options: PayloadOptions,
    ) -> IframeOutcome:
        try:
            access = await self._access(driver, selector)
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.warning(f"[{session_id}] Could not inspect iframe {selector}: {e}")
            return IframeOutcome.FAILED

        if not access.get('found'):
            logger.debug(f"[{session_id}] Iframe {selector} no longer in document")
            return IframeOutcome.NOT_FOUND

        if not access.get('accessible'):
            logger.info(f"[{session_id}] Skipping cross-origin iframe {access.get('src') or selector}")
            return IframeOutcome.CROSS_ORIGIN

        if access.get('instrumented'):
            return IframeOutcome.ALREADY_INSTRUMENTED

        try:
            method = await driver.run_script(FRAME_INJECT_SCRIPT, {
                'selector': selector,
                'source': build_frame_payload(options),
                'scriptId': markers.FRAME_SCRIPT_ELEMENT_ID,
                'activeFlag': markers.ACTIVE_FLAG,
            })
        except SessionUnreachableError:
            raise
        except DriverError as e:
            # Origin can change between the access check and the injection
            if 'securityerror' in str(e).lower() or 'cross-origin' in str(e).lower():
                logger.info(f"[{session_id}] Iframe {selector} became cross-origin")
                return IframeOutcome.CROSS_ORIGIN
            logger.warning(f"[{session_id}] Iframe injection failed for {selector}: {e}")
            return IframeOutcome.FAILED

        try:
            verified = await self._access(driver, selector)
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.warning(f"[{session_id}] Iframe verification failed for {selector}: {e}")
            return IframeOutcome.FAILED

        if verified.get('instrumented'):
            logger.info(f"[{session_id}] Instrumented iframe {selector} via {method}")
            return IframeOutcome.INSTRUMENTED

        logger.warning(f"[{session_id}] Iframe {selector} not instrumented after injection")
        return IframeOutcome.FAILED

    async def scan(
        self,
        driver: BrowserDriver,
        session_id: str,
        options: PayloadOptions,
    ) -> Dict[str, IframeOutcome]:
        """Try every iframe currently in the document."""
        try:
            selectors: List[str] = await driver.run_script(FRAME_LIST_SCRIPT, {
                'frameAttr': markers.FRAME_ATTRIBUTE,
            }) or []
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.debug(f"[{session_id}] Iframe scan failed: {e}")
            return {}

        outcomes = {}
        for selector in selectors:
            outcomes[selector] = await self.instrument(driver, session_id, selector, options)
        return outcomes
