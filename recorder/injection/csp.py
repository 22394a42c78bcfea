"""Best-effort Content-Security-Policy mitigation.

Two independent tactics reduce the chance that a page policy blocks the
payload or its event delivery:

- Page-side: drop ``<meta>`` policies, insert a permissive one and keep a
  MutationObserver that strips policy metas the page adds later.
- Driver-side: ask the browser protocol to bypass CSP before navigating.

Header-delivered policies cannot be touched from page script, so neither
tactic is guaranteed. Failures are logged and never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..capture.driver import BrowserDriver, DriverError, SessionUnreachableError
from ..payload import markers

logger = logging.getLogger(__name__)


PERMISSIVE_POLICY = (
    "default-src * 'unsafe-inline' 'unsafe-eval' data: blob:; "
    "connect-src * 'unsafe-inline' 'unsafe-eval' data: blob:;"
)

PAGE_MITIGATION_SCRIPT = """
(args) => {
  var result = { removed: 0, inserted: false, observerInstalled: false };
  var selector = 'meta[http-equiv="Content-Security-Policy" i], meta[http-equiv="Content-Security-Policy-Report-Only" i]';
  var metas = document.querySelectorAll(selector);
  for (var i = 0; i < metas.length; i++) {
    if (metas[i].hasAttribute(args.metaAttr)) { continue; }
    if (metas[i].parentNode) {
      metas[i].parentNode.removeChild(metas[i]);
      result.removed++;
    }
  }

  var head = document.head || document.documentElement;
  if (head && !document.querySelector('meta[' + args.metaAttr + ']')) {
    var meta = document.createElement('meta');
    meta.setAttribute('http-equiv', 'Content-Security-Policy');
    meta.setAttribute('content', args.policy);
    meta.setAttribute(args.metaAttr, 'true');
    head.insertBefore(meta, head.firstChild);
    result.inserted = true;
  }

  if (!window[args.guardKey]) {
    var guard = new MutationObserver(function (mutations) {
      for (var m = 0; m < mutations.length; m++) {
        var added = mutations[m].addedNodes;
        for (var n = 0; n < added.length; n++) {
          var node = added[n];
          if (node.nodeType !== 1 || node.tagName !== 'META') { continue; }
          var equiv = node.getAttribute('http-equiv') || '';
          if (/content-security-policy/i.test(equiv) && !node.hasAttribute(args.metaAttr) && node.parentNode) {
            node.parentNode.removeChild(node);
          }
        }
      }
    });
    guard.observe(document.documentElement || document, { childList: true, subtree: true });
    window[args.guardKey] = guard;
    result.observerInstalled = true;
  }
  return result;
}
"""

ANALYZE_SCRIPT = """
(args) => {
  var metas = document.querySelectorAll('meta[http-equiv="Content-Security-Policy" i]');
  var policies = [];
  for (var i = 0; i < metas.length; i++) {
    policies.push({
      content: metas[i].getAttribute('content') || '',
      permissive: metas[i].hasAttribute(args.metaAttr)
    });
  }
  var evalAllowed = false;
  try { evalAllowed = (new Function('return true'))() === true; } catch (err) { evalAllowed = false; }
  return {
    metaPolicies: policies,
    evalAllowed: evalAllowed,
    guardInstalled: !!window[args.guardKey]
  };
}
"""


@dataclass
class CSPMitigationResult:
    """What the page-side tactic managed to do."""
    removed_policies: int = 0
    inserted_permissive: bool = False
    observer_installed: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def parse_policy(policy: str) -> Dict[str, List[str]]:
    """Split a CSP string into ``{directive: [sources]}``."""
    directives: Dict[str, List[str]] = {}
    for part in policy.split(';'):
        tokens = part.strip().split()
        if not tokens:
            continue
        name = tokens[0].lower()
        # First occurrence of a directive wins
        directives.setdefault(name, tokens[1:])
    return directives


def policy_allows_connect(directives: Dict[str, List[str]], target_url: str) -> bool:
    """Whether a parsed policy lets page script connect to ``target_url``."""
    sources = directives.get('connect-src', directives.get('default-src'))
    if sources is None:
        return True

    parsed = urlparse(target_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    for source in sources:
        source = source.strip("'\"")
        if source == '*':
            return True
        if source.rstrip('/') == origin:
            return True
        if source.endswith(':') and source[:-1] == parsed.scheme:
            return True
        if source == parsed.netloc:
            return True
    return False


class CSPMitigator:
    """Applies both CSP tactics and reports page policy diagnostics."""

    def __init__(self, policy: str = PERMISSIVE_POLICY, enabled: bool = True):
        self.policy = policy
        self.enabled = enabled

    async def prepare_navigation(self, driver: BrowserDriver) -> bool:
        """Request the driver-side bypass before a navigation."""
        if not self.enabled:
            return False
        try:
            enabled = await driver.enable_csp_bypass()
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.debug(f"Driver-side CSP bypass failed: {e}")
            return False

        if not enabled:
            logger.debug(f"Driver-side CSP bypass not available for {driver.browser_kind}")
        return enabled

    async def mitigate_page(self, driver: BrowserDriver) -> CSPMitigationResult:
        """Run the page-side tactic. Safe to call repeatedly."""
        if not self.enabled:
            return CSPMitigationResult()

        try:
            raw = await driver.run_script(PAGE_MITIGATION_SCRIPT, {
                'policy': self.policy,
                'metaAttr': markers.CSP_META_ATTRIBUTE,
                'guardKey': markers.CSP_GUARD,
            })
        except SessionUnreachableError:
            raise
        except DriverError as e:
            logger.debug(f"Page-side CSP mitigation failed: {e}")
            return CSPMitigationResult(error=str(e))

        raw = raw if isinstance(raw, dict) else {}
        result = CSPMitigationResult(
            removed_policies=int(raw.get('removed', 0) or 0),
            inserted_permissive=bool(raw.get('inserted')),
            observer_installed=bool(raw.get('observerInstalled')),
        )
        if result.removed_policies:
            logger.info(f"Removed {result.removed_policies} CSP meta policies from page")
        return result

    async def analyze(self, driver: BrowserDriver, server_url: Optional[str] = None) -> Dict[str, Any]:
        """Describe the page's meta policies and whether delivery looks blocked."""
        analysis: Dict[str, Any] = {
            'meta_policies': [],
            'directives': {},
            'eval_allowed': None,
            'guard_installed': False,
            'connect_allowed': None,
        }

        try:
            raw = await driver.run_script(ANALYZE_SCRIPT, {
                'metaAttr': markers.CSP_META_ATTRIBUTE,
                'guardKey': markers.CSP_GUARD,
            })
        except SessionUnreachableError:
            raise
        except DriverError as e:
            analysis['error'] = str(e)
            return analysis

        raw = raw if isinstance(raw, dict) else {}
        policies = raw.get('metaPolicies') or []
        analysis['meta_policies'] = policies
        analysis['eval_allowed'] = raw.get('evalAllowed')
        analysis['guard_installed'] = bool(raw.get('guardInstalled'))

        restrictive = [p.get('content', '') for p in policies if not p.get('permissive')]
        directives: Dict[str, List[str]] = {}
        for policy in restrictive:
            for name, sources in parse_policy(policy).items():
                directives.setdefault(name, sources)
        analysis['directives'] = directives

        if server_url:
            analysis['connect_allowed'] = policy_allows_connect(directives, server_url)

        return analysis
