"""Ranked SPA framework probes rendered into the monitor payload.

Each probe is an independent detection expression plus an optional listener
that hooks the framework's own route-change notifications. Detection is an
optimization only; the generic history and mutation hooks in the monitor do
not depend on it. New frameworks are supported by appending a probe.
"""

import json
from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class FrameworkProbe:
    """Detection rule for one client-side framework.

    Attributes:
        tag: Capability tag reported when the probe matches
        detect: JS expression, truthy when the framework is present
        listen: Optional JS function body run with ``notify`` in scope,
            registering framework route-change callbacks
    """
    tag: str
    detect: str
    listen: Optional[str] = None


# More specific probes first, e.g. next before react
FRAMEWORK_PROBES: List[FrameworkProbe] = [
    FrameworkProbe(
        tag="next",
        detect="window.__NEXT_DATA__ || window.next",
        listen=(
            "var r = window.next && window.next.router;"
            "if (r && r.events && r.events.on) { r.events.on('routeChangeComplete', notify); }"
        ),
    ),
    FrameworkProbe(
        tag="nuxt",
        detect="window.$nuxt || window.__NUXT__",
        listen=(
            "var n = window.$nuxt;"
            "if (n && n.$router && n.$router.afterEach) { n.$router.afterEach(function () { notify(); }); }"
        ),
    ),
    FrameworkProbe(
        tag="react",
        detect=(
            "window.React || document.querySelector('[data-reactroot], [data-reactid]')"
            " || (document.getElementById('root') && document.getElementById('root')._reactRootContainer)"
        ),
    ),
    FrameworkProbe(
        tag="angular",
        detect="window.angular || window.ng || document.querySelector('[ng-version], [ng-app], [data-ng-app]')",
        listen=(
            "var el = window.angular && window.angular.element(document.documentElement);"
            "var injector = el && el.injector && el.injector();"
            "if (injector) {"
            "  var rootScope = injector.get('$rootScope');"
            "  rootScope.$on('$routeChangeSuccess', function () { notify(); });"
            "  rootScope.$on('$stateChangeSuccess', function () { notify(); });"
            "}"
        ),
    ),
    FrameworkProbe(
        tag="vue",
        detect="window.Vue || window.__VUE__ || document.querySelector('[data-v-app], [data-server-rendered]')",
        listen=(
            "var host = document.querySelector('[data-v-app]');"
            "var app = host && host.__vue_app__;"
            "var router = app && app.config && app.config.globalProperties.$router;"
            "if (router && router.afterEach) { router.afterEach(function () { notify(); }); }"
        ),
    ),
    FrameworkProbe(tag="ember", detect="window.Ember || window.Em"),
    FrameworkProbe(
        tag="backbone",
        detect="window.Backbone && window.Backbone.history",
        listen="if (window.Backbone.history.on) { window.Backbone.history.on('route', function () { notify(); }); }",
    ),
    FrameworkProbe(tag="polymer", detect="window.Polymer"),
    FrameworkProbe(tag="svelte", detect="document.querySelector('[class*=\"svelte-\"]')"),
    FrameworkProbe(
        tag="htmx",
        detect="window.htmx",
        listen=(
            "document.addEventListener('htmx:afterSwap', function () { notify(); });"
            "document.addEventListener('htmx:afterRequest', function () { notify(); });"
        ),
    ),
    FrameworkProbe(
        tag="jquery",
        detect="window.jQuery",
        listen="if (window.jQuery.fn && window.jQuery(document).ajaxComplete) { window.jQuery(document).ajaxComplete(function () { notify(); }); }",
    ),
]


def render_probes_js(probes: Iterable[FrameworkProbe] = FRAMEWORK_PROBES) -> str:
    """Render probes as a JS array literal of ``{tag, detect, listen}`` objects."""
    entries = []
    for probe in probes:
        listen = f"function (notify) {{ {probe.listen} }}" if probe.listen else "null"
        entries.append(
            "{"
            f"tag: {json.dumps(probe.tag)}, "
            f"detect: function () {{ return !!({probe.detect}); }}, "
            f"listen: {listen}"
            "}"
        )
    return "[\n    " + ",\n    ".join(entries) + "\n  ]"


def probe_tags(probes: Iterable[FrameworkProbe] = FRAMEWORK_PROBES) -> List[str]:
    return [probe.tag for probe in probes]
