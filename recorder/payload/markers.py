"""Names of the globals, elements and events shared with page script.

Host-side code only ever observes the page through these names, so they are
kept in one place and passed into every script that needs them.
"""

from typing import Dict

# Globals on the page's window object
ACTIVE_FLAG = "__rsRecorderActive"
OBSERVER_GLOBAL = "__rsMutationObserver"
SELF_CHECK_GLOBAL = "__rsHealthCheckInterval"
SIGNAL_QUEUE = "__rsSignalQueue"
HOST_BINDING = "__rsHostSignal"
SEND_EVENT = "__rsSendEvent"
ENSURE_UI = "__rsEnsureIndicator"
TEARDOWN = "__rsTeardown"
ERRORS = "__rsRecorderErrors"
STATE = "__rsRecorderState"
FRAMEWORKS = "__rsFrameworks"
CSP_GUARD = "__rsCspGuard"

# DOM markers
INDICATOR_ID = "rs-recorder-indicator"
SCRIPT_ELEMENT_ID = "rs-recorder-script"
FRAME_SCRIPT_ELEMENT_ID = "rs-recorder-frame-script"
FRAME_ATTRIBUTE = "data-rs-frame-id"
CSP_META_ATTRIBUTE = "data-rs-permissive"

# CustomEvent names dispatched on window
EVENT_URL_CHANGED = "rs_url_changed"
EVENT_SCRIPT_NEEDED = "rs_recorder_script_needed"
EVENT_UI_NEEDED = "rs_recorder_ui_needed"
EVENT_IFRAME_NEEDS_SCRIPT = "rs_iframe_needs_script"
EVENT_IFRAME_DETECTED = "rs_iframe_detected"

# postMessage type sent from an instrumented frame to its parent
CHILD_MESSAGE_TYPE = "rs_recorder_needed"


def marker_map() -> Dict[str, str]:
    """Marker names in the shape page scripts expect."""
    return {
        'activeFlag': ACTIVE_FLAG,
        'observer': OBSERVER_GLOBAL,
        'selfCheck': SELF_CHECK_GLOBAL,
        'signalQueue': SIGNAL_QUEUE,
        'hostBinding': HOST_BINDING,
        'sendEvent': SEND_EVENT,
        'ensureUi': ENSURE_UI,
        'teardown': TEARDOWN,
        'errors': ERRORS,
        'state': STATE,
        'frameworks': FRAMEWORKS,
        'cspGuard': CSP_GUARD,
        'indicatorId': INDICATOR_ID,
        'scriptId': SCRIPT_ELEMENT_ID,
        'frameScriptId': FRAME_SCRIPT_ELEMENT_ID,
        'frameAttr': FRAME_ATTRIBUTE,
        'cspMetaAttr': CSP_META_ATTRIBUTE,
        'childMessage': CHILD_MESSAGE_TYPE,
    }


def event_map() -> Dict[str, str]:
    """CustomEvent names in the shape page scripts expect."""
    return {
        'urlChanged': EVENT_URL_CHANGED,
        'scriptNeeded': EVENT_SCRIPT_NEEDED,
        'uiNeeded': EVENT_UI_NEEDED,
        'iframeNeedsScript': EVENT_IFRAME_NEEDS_SCRIPT,
        'iframeDetected': EVENT_IFRAME_DETECTED,
    }
