"""In-page recorder and monitor payloads.

The payloads are JavaScript rendered from templates. They record user
interactions, keep themselves alive across SPA re-renders and raise signals
towards the host when they believe they were lost.
"""

from . import markers
from .builder import (
    APP_ROOT_IDS,
    PayloadOptions,
    PayloadTiming,
    build_frame_payload,
    build_page_payload,
    js_literal,
)
from .frameworks import FRAMEWORK_PROBES, FrameworkProbe, probe_tags, render_probes_js

__all__ = [
    "markers",
    "APP_ROOT_IDS",
    "PayloadOptions",
    "PayloadTiming",
    "build_frame_payload",
    "build_page_payload",
    "js_literal",
    "FRAMEWORK_PROBES",
    "FrameworkProbe",
    "probe_tags",
    "render_probes_js",
]
