"""JavaScript templates for the in-page recorder and monitor payloads.

The payloads are self-contained immediately-invoked function expressions.
``__RS_OPTIONS__`` is replaced with a JSON object literal and
``__RS_FRAMEWORK_PROBES__`` with the rendered probe list, so the same text
works whether it is evaluated directly, attached as a script element or
assembled from chunks.
"""

OPTIONS_PLACEHOLDER = "__RS_OPTIONS__"
PROBES_PLACEHOLDER = "__RS_FRAMEWORK_PROBES__"


PAGE_HEADER_JS = """
  var OPTIONS = __RS_OPTIONS__;
  var M = OPTIONS.markers;
  var E = OPTIONS.events;
  var T = OPTIONS.timing;

  if (window[M.activeFlag] === true) {
    try {
      if (typeof window[M.ensureUi] === 'function') { window[M.ensureUi](); }
    } catch (err) {}
    return { status: 'already_installed', frameworks: window[M.frameworks] || [] };
  }
"""


FRAME_HEADER_JS = """
  var OPTIONS = __RS_OPTIONS__;
  var M = OPTIONS.markers;
  var E = OPTIONS.events;
  var T = OPTIONS.timing;

  if (window[M.activeFlag] === true) {
    return { status: 'already_installed', frame: true };
  }
"""


# Shared by the page and frame payloads: error capture, timer registry,
# element description, interaction capture and retrying delivery.
COMMON_JS = """
  var alive = true;
  var errors = window[M.errors] = window[M.errors] || [];

  function recordError(where, err) {
    try {
      errors.push({ where: where, message: String((err && err.message) || err), at: Date.now() });
      if (errors.length > 50) { errors.splice(0, errors.length - 50); }
    } catch (ignored) {}
  }

  function safe(where, fn) {
    return function () {
      try {
        return fn.apply(this, arguments);
      } catch (err) {
        recordError(where, err);
      }
    };
  }

  var timers = [];
  var intervals = [];
  var listeners = [];

  function later(fn, delay) {
    if (!alive) { return null; }
    var id = setTimeout(function () {
      var index = timers.indexOf(id);
      if (index !== -1) { timers.splice(index, 1); }
      if (!alive) { return; }
      try { fn(); } catch (err) { recordError('timer', err); }
    }, delay);
    timers.push(id);
    return id;
  }

  function cancel(id) {
    if (id === null || id === undefined) { return; }
    clearTimeout(id);
    var index = timers.indexOf(id);
    if (index !== -1) { timers.splice(index, 1); }
  }

  function every(fn, delay) {
    var id = setInterval(safe('interval', fn), delay);
    intervals.push(id);
    return id;
  }

  function listen(target, type, handler, capture) {
    var wrapped = safe(type, handler);
    target.addEventListener(type, wrapped, !!capture);
    listeners.push([target, type, wrapped, !!capture]);
  }

  function teardownCommon() {
    alive = false;
    for (var i = 0; i < timers.length; i++) { clearTimeout(timers[i]); }
    for (var j = 0; j < intervals.length; j++) { clearInterval(intervals[j]); }
    for (var k = 0; k < listeners.length; k++) {
      try { listeners[k][0].removeEventListener(listeners[k][1], listeners[k][2], listeners[k][3]); } catch (err) {}
    }
    timers.length = 0;
    intervals.length = 0;
    listeners.length = 0;
  }

  function escapeIdent(value) {
    return (window.CSS && CSS.escape) ? CSS.escape(value) : value;
  }

  function cssPath(el) {
    if (!el || el.nodeType !== 1) { return null; }
    var parts = [];
    while (el && el.nodeType === 1 && parts.length < 6) {
      if (el.id) {
        parts.unshift('#' + escapeIdent(el.id));
        break;
      }
      var part = el.tagName.toLowerCase();
      var parent = el.parentNode;
      if (parent && parent.children) {
        var same = 0;
        var position = 0;
        for (var i = 0; i < parent.children.length; i++) {
          if (parent.children[i].tagName === el.tagName) {
            same++;
            if (parent.children[i] === el) { position = same; }
          }
        }
        if (same > 1) { part += ':nth-of-type(' + position + ')'; }
      }
      parts.unshift(part);
      el = parent;
    }
    return parts.join(' > ');
  }

  function xpath(el) {
    var segments = [];
    for (; el && el.nodeType === 1; el = el.parentNode) {
      if (el.id) {
        segments.unshift('//*[@id="' + el.id + '"]');
        return segments.join('/');
      }
      var index = 1;
      for (var sib = el.previousElementSibling; sib; sib = sib.previousElementSibling) {
        if (sib.tagName === el.tagName) { index++; }
      }
      segments.unshift(el.tagName.toLowerCase() + '[' + index + ']');
    }
    return '/' + segments.join('/');
  }

  function describe(el) {
    if (!el || el.nodeType !== 1) { return null; }
    var text = (el.innerText || el.textContent || '').trim();
    return {
      tagName: el.tagName.toLowerCase(),
      id: el.id || null,
      name: el.getAttribute('name'),
      type: el.getAttribute('type'),
      className: typeof el.className === 'string' ? el.className : null,
      text: text.length > 100 ? text.slice(0, 100) : text,
      href: el.getAttribute('href'),
      placeholder: el.getAttribute('placeholder'),
      ariaLabel: el.getAttribute('aria-label'),
      testId: el.getAttribute('data-testid'),
      cssSelector: cssPath(el),
      xpath: xpath(el)
    };
  }

  function isOwnUi(el) {
    return !!(el && el.closest && el.closest('#' + M.indicatorId));
  }

  function fieldValue(target) {
    var type = (target.type || '').toLowerCase();
    if (OPTIONS.maskPasswords && type === 'password') { return '********'; }
    if (type === 'checkbox' || type === 'radio') { return !!target.checked; }
    return target.value;
  }

  function installCapture(send) {
    if (OPTIONS.capture.clicks) {
      listen(document, 'click', function (event) {
        var target = event.target;
        if (!target || isOwnUi(target)) { return; }
        send('CLICK', { elementInfo: describe(target) });
      }, true);
    }

    if (OPTIONS.capture.inputs) {
      listen(document, 'input', function (event) {
        var target = event.target;
        if (!target || isOwnUi(target)) { return; }
        cancel(target.__rsInputTimer);
        target.__rsInputTimer = later(function () {
          target.__rsInputTimer = null;
          send('INPUT', { elementInfo: describe(target), value: fieldValue(target) });
        }, T.inputDebounceMs);
      }, true);

      listen(document, 'change', function (event) {
        var target = event.target;
        if (!target || isOwnUi(target)) { return; }
        var tag = (target.tagName || '').toLowerCase();
        var type = (target.type || '').toLowerCase();
        if (tag === 'select' || type === 'checkbox' || type === 'radio') {
          send('INPUT', { elementInfo: describe(target), value: fieldValue(target) });
        }
      }, true);
    }

    if (OPTIONS.capture.forms) {
      listen(document, 'submit', function (event) {
        send('FORM_SUBMIT', { elementInfo: describe(event.target) });
      }, true);
    }
  }

  function isAppRoot(node) {
    if (!node || node.nodeType !== 1) { return false; }
    if (node === document.body || node === document.documentElement) { return true; }
    var id = node.id || '';
    if (id) {
      if (OPTIONS.appRootIds.indexOf(id) !== -1) { return true; }
      var lowered = id.toLowerCase();
      if (lowered.indexOf('app') !== -1 || lowered.indexOf('root') !== -1) { return true; }
    }
    for (var i = 0; i < OPTIONS.appRootAttributes.length; i++) {
      if (node.hasAttribute && node.hasAttribute(OPTIONS.appRootAttributes[i])) { return true; }
    }
    return false;
  }

  function isSignificant(mutations, threshold) {
    for (var i = 0; i < mutations.length; i++) {
      var m = mutations[i];
      if (m.type !== 'childList' || !isAppRoot(m.target)) { continue; }
      if (m.addedNodes.length > threshold || m.removedNodes.length > threshold) { return true; }
    }
    return false;
  }

  var endpoint = OPTIONS.serverUrl + '/api/recorder/events/' + encodeURIComponent(OPTIONS.sessionId);
  var outbox = [];
  var retryTimer = null;
  var retryDelay = T.retryBaseMs;

  function post(event, done) {
    try {
      var xhr = new XMLHttpRequest();
      xhr.open('POST', endpoint, true);
      xhr.setRequestHeader('Content-Type', 'application/json');
      xhr.timeout = T.postTimeoutMs;
      xhr.onload = function () { done(xhr.status >= 200 && xhr.status < 300); };
      xhr.onerror = function () { done(false); };
      xhr.ontimeout = function () { done(false); };
      xhr.send(JSON.stringify(event));
    } catch (err) {
      recordError('post', err);
      done(false);
    }
  }

  function scheduleRetry(delay) {
    if (retryTimer !== null) { return; }
    retryTimer = later(function () {
      retryTimer = null;
      var next = outbox.shift();
      if (next) { deliver(next); }
    }, delay);
  }

  function deliver(event) {
    post(event, function (ok) {
      if (ok) {
        retryDelay = T.retryBaseMs;
        if (outbox.length) { scheduleRetry(0); }
        return;
      }
      outbox.push(event);
      if (outbox.length > OPTIONS.maxOutbox) { outbox.splice(0, outbox.length - OPTIONS.maxOutbox); }
      scheduleRetry(retryDelay);
      retryDelay = Math.min(retryDelay * 2, T.retryMaxMs);
    });
  }
"""


PAGE_BODY_JS = """
  var state = window[M.state] = { paused: false, sessionId: OPTIONS.sessionId, installedAt: Date.now() };

  var signalQueue = window[M.signalQueue] = window[M.signalQueue] || [];

  function raise(eventName, signalType, detail) {
    if (!alive) { return; }
    var signal = { type: signalType, detail: detail || {}, timestamp: Date.now() };
    try {
      window.dispatchEvent(new CustomEvent(eventName, { detail: signal.detail }));
    } catch (err) {
      recordError('dispatch', err);
    }
    var delivered = false;
    try {
      if (typeof window[M.hostBinding] === 'function') {
        var pending = window[M.hostBinding](signal);
        delivered = true;
        if (pending && typeof pending.then === 'function') {
          pending.then(null, function () { signalQueue.push(signal); });
        }
      }
    } catch (err) {
      recordError('hostBinding', err);
    }
    if (!delivered) {
      signalQueue.push(signal);
      if (signalQueue.length > OPTIONS.maxSignals) {
        signalQueue.splice(0, signalQueue.length - OPTIONS.maxSignals);
      }
    }
  }

  function sendEvent(type, data) {
    try {
      if (state.paused && type !== 'RECORDER_CONTROL') { return false; }
      var event = {
        sessionId: OPTIONS.sessionId,
        type: type,
        timestamp: Date.now(),
        url: location.href,
        title: document.title
      };
      if (data) {
        for (var key in data) {
          if (Object.prototype.hasOwnProperty.call(data, key)) { event[key] = data[key]; }
        }
      }
      deliver(event);
      return true;
    } catch (err) {
      recordError('sendEvent', err);
      return false;
    }
  }
  window[M.sendEvent] = sendEvent;

  // Recorder indicator with pause/resume/stop controls
  function setPaused(paused) {
    state.paused = paused;
    var bar = document.getElementById(M.indicatorId);
    if (!bar) { return; }
    bar.setAttribute('data-state', paused ? 'paused' : 'recording');
    var label = bar.querySelector('[data-rs-role="label"]');
    if (label) { label.textContent = paused ? 'Paused' : 'Recording'; }
    var toggle = bar.querySelector('[data-rs-role="toggle"]');
    if (toggle) { toggle.textContent = paused ? 'Resume' : 'Pause'; }
  }

  function control(action) {
    sendEvent('RECORDER_CONTROL', { value: action });
    if (action === 'PAUSE') {
      setPaused(true);
    } else if (action === 'RESUME') {
      setPaused(false);
    } else if (action === 'STOP') {
      teardown();
    }
  }

  function button(role, text, onClick) {
    var b = document.createElement('button');
    b.type = 'button';
    b.textContent = text;
    b.setAttribute('data-rs-role', role);
    b.style.cssText = 'margin-left:6px;padding:2px 8px;border:0;border-radius:3px;' +
      'background:#fff;color:#c62828;font:12px sans-serif;cursor:pointer;';
    b.addEventListener('click', function (event) {
      event.preventDefault();
      event.stopPropagation();
      try { onClick(); } catch (err) { recordError('control', err); }
    }, false);
    return b;
  }

  function ensureIndicator() {
    if (!OPTIONS.showIndicator) { return false; }
    if (document.getElementById(M.indicatorId)) { return true; }
    var host = document.body || document.documentElement;
    if (!host) { return false; }
    var bar = document.createElement('div');
    bar.id = M.indicatorId;
    bar.setAttribute('data-state', state.paused ? 'paused' : 'recording');
    bar.style.cssText = 'position:fixed;top:10px;right:10px;z-index:2147483647;display:flex;' +
      'align-items:center;padding:6px 10px;border-radius:4px;background:#c62828;color:#fff;' +
      'font:12px sans-serif;box-shadow:0 2px 6px rgba(0,0,0,.3);';
    var label = document.createElement('span');
    label.setAttribute('data-rs-role', 'label');
    label.textContent = state.paused ? 'Paused' : 'Recording';
    bar.appendChild(label);
    bar.appendChild(button('toggle', state.paused ? 'Resume' : 'Pause', function () {
      control(state.paused ? 'RESUME' : 'PAUSE');
    }));
    bar.appendChild(button('stop', 'Stop', function () { control('STOP'); }));
    host.appendChild(bar);
    return true;
  }
  window[M.ensureUi] = ensureIndicator;

  // Presence and URL tracking
  var lastUrl = location.href;
  var lastTitle = document.title;

  function checkPresence(reason) {
    if (window[M.activeFlag] !== true) {
      raise(E.scriptNeeded, 'reinstall_needed', { reason: reason, url: location.href });
      return false;
    }
    if (OPTIONS.showIndicator && !document.getElementById(M.indicatorId)) {
      if (!ensureIndicator()) {
        raise(E.uiNeeded, 'ui_needed', { reason: reason, url: location.href });
      }
    }
    return true;
  }

  function checkUrl(trigger) {
    var url = location.href;
    var title = document.title;
    if (url === lastUrl && title === lastTitle) { return false; }
    var previous = lastUrl;
    lastUrl = url;
    lastTitle = title;
    raise(E.urlChanged, 'navigation', {
      prevUrl: previous,
      newUrl: url,
      title: title,
      trigger: trigger,
      timestamp: Date.now()
    });
    if (url !== previous && OPTIONS.capture.navigation) {
      sendEvent('NAVIGATION', { value: { from: previous, to: url, trigger: trigger } });
    }
    later(function () { checkPresence('url_change'); }, T.urlRecheckMs);
    return true;
  }

  // Framework route listeners
  var PROBES = __RS_FRAMEWORK_PROBES__;
  var attached = {};

  function onFrameworkRoute() {
    later(function () {
      checkUrl('framework');
      checkPresence('framework_route');
    }, T.historyCheckMs);
  }

  function detectFrameworks() {
    var detected = window[M.frameworks] = window[M.frameworks] || [];
    for (var i = 0; i < PROBES.length; i++) {
      var probe = PROBES[i];
      if (attached[probe.tag]) { continue; }
      var present = OPTIONS.frameworkHints.indexOf(probe.tag) !== -1;
      if (!present) {
        try { present = probe.detect(); } catch (err) { present = false; }
      }
      if (!present) { continue; }
      attached[probe.tag] = true;
      if (detected.indexOf(probe.tag) === -1) { detected.push(probe.tag); }
      if (probe.listen) {
        try { probe.listen(onFrameworkRoute); } catch (err) { recordError('framework:' + probe.tag, err); }
      }
    }
    return detected;
  }

  // History API interception
  var patched = [];
  ['pushState', 'replaceState'].forEach(function (method) {
    var original = history[method];
    if (typeof original !== 'function') { return; }
    if (original.__rsOriginal) { original = original.__rsOriginal; }
    var wrapped = function () {
      var result = original.apply(this, arguments);
      later(function () { checkUrl(method); }, T.historyCheckMs);
      return result;
    };
    wrapped.__rsOriginal = original;
    history[method] = wrapped;
    patched.push([method, original]);
  });

  listen(window, 'popstate', function () {
    later(function () { checkUrl('popstate'); }, T.historyCheckMs);
  });
  listen(window, 'hashchange', function () { checkUrl('hashchange'); });

  // Iframe discovery
  function frameSelector(frame) {
    var id = frame.getAttribute(M.frameAttr);
    if (!id) {
      window.__rsFrameSeq = (window.__rsFrameSeq || 0) + 1;
      id = String(window.__rsFrameSeq);
      frame.setAttribute(M.frameAttr, id);
    }
    return 'iframe[' + M.frameAttr + '="' + id + '"]';
  }

  function frameDocument(frame) {
    try {
      return frame.contentDocument || (frame.contentWindow && frame.contentWindow.document) || null;
    } catch (err) {
      return null;
    }
  }

  function scanIframes() {
    var frames = document.getElementsByTagName('iframe');
    var now = Date.now();
    for (var i = 0; i < frames.length; i++) {
      var frame = frames[i];
      var selector = frameSelector(frame);
      if (!frame.__rsLoadHooked) {
        frame.__rsLoadHooked = true;
        frame.addEventListener('load', function () {
          this.__rsRequestedAt = 0;
          later(scanIframes, T.iframeLoadMs);
        });
      }
      var doc = frameDocument(frame);
      if (!frame.__rsDetected) {
        frame.__rsDetected = true;
        raise(E.iframeDetected, 'iframe_detected', { selector: selector, src: frame.src || '', crossOrigin: !doc });
      }
      if (!doc) { continue; }
      var instrumented = false;
      try { instrumented = frame.contentWindow[M.activeFlag] === true; } catch (err) { instrumented = false; }
      if (instrumented) { continue; }
      if (frame.__rsRequestedAt && now - frame.__rsRequestedAt < T.iframeRetryMs) { continue; }
      frame.__rsRequestedAt = now;
      raise(E.iframeNeedsScript, 'iframe_needs_instrumentation', {
        selector: selector,
        src: frame.src || '',
        url: location.href
      });
    }
  }

  function addsIframe(mutations) {
    for (var i = 0; i < mutations.length; i++) {
      var added = mutations[i].addedNodes;
      for (var j = 0; j < added.length; j++) {
        var node = added[j];
        if (node.nodeType !== 1) { continue; }
        if (node.tagName === 'IFRAME') { return true; }
        if (node.getElementsByTagName && node.getElementsByTagName('iframe').length) { return true; }
      }
    }
    return false;
  }

  listen(window, 'message', function (event) {
    var data = event.data;
    if (!data || typeof data !== 'object' || data.type !== M.childMessage) { return; }
    var frames = document.getElementsByTagName('iframe');
    for (var i = 0; i < frames.length; i++) {
      if (frames[i].contentWindow === event.source) {
        raise(E.iframeNeedsScript, 'iframe_needs_instrumentation', {
          selector: frameSelector(frames[i]),
          url: data.url || '',
          source: 'iframe'
        });
        return;
      }
    }
  });

  // DOM mutation monitoring
  var settleTimer = null;
  var observer = new MutationObserver(safe('mutation', function (mutations) {
    checkUrl('mutation');
    if (isSignificant(mutations, T.significantNodes)) {
      cancel(settleTimer);
      settleTimer = later(function () {
        settleTimer = null;
        checkPresence('significant_mutation');
      }, T.mutationSettleMs);
    }
    if (OPTIONS.scanIframes && addsIframe(mutations)) {
      later(scanIframes, T.iframeRescanMs);
    }
  }));
  observer.observe(document, { childList: true, subtree: true });
  window[M.observer] = observer;

  function teardown() {
    try { observer.disconnect(); } catch (err) {}
    for (var i = 0; i < patched.length; i++) {
      var current = history[patched[i][0]];
      if (current && current.__rsOriginal === patched[i][1]) { history[patched[i][0]] = patched[i][1]; }
    }
    teardownCommon();
    var bar = document.getElementById(M.indicatorId);
    if (bar && bar.parentNode) { bar.parentNode.removeChild(bar); }
    window[M.activeFlag] = false;
    window[M.observer] = null;
    window[M.selfCheck] = null;
    window[M.ensureUi] = null;
    window[M.sendEvent] = null;
    window[M.teardown] = null;
    return true;
  }
  window[M.teardown] = teardown;

  window[M.activeFlag] = true;
  var frameworks = detectFrameworks();
  ensureIndicator();
  installCapture(sendEvent);

  window[M.selfCheck] = every(function () {
    checkUrl('poll');
    checkPresence('self_check');
    detectFrameworks();
  }, T.selfCheckMs);

  if (OPTIONS.scanIframes) { later(scanIframes, T.iframeInitialScanMs); }

  sendEvent('INIT', {
    value: {
      frameworks: frameworks,
      userAgent: navigator.userAgent,
      viewport: { width: window.innerWidth, height: window.innerHeight }
    }
  });

  return {
    status: 'installed',
    frameworks: frameworks,
    uiPresent: !!document.getElementById(M.indicatorId)
  };
"""


FRAME_BODY_JS = """
  function parentSender() {
    try {
      if (window.parent && window.parent !== window && typeof window.parent[M.sendEvent] === 'function') {
        return window.parent[M.sendEvent];
      }
    } catch (err) {}
    return null;
  }

  function sendEvent(type, data) {
    try {
      var fields = { fromIframe: true, url: location.href, title: document.title };
      if (data) {
        for (var key in data) {
          if (Object.prototype.hasOwnProperty.call(data, key)) { fields[key] = data[key]; }
        }
      }
      var proxy = parentSender();
      if (proxy) {
        proxy(type, fields);
        return true;
      }
      fields.sessionId = OPTIONS.sessionId;
      fields.type = type;
      fields.timestamp = Date.now();
      deliver(fields);
      return true;
    } catch (err) {
      recordError('sendEvent', err);
      return false;
    }
  }
  // Nested frames proxy through this frame
  window[M.sendEvent] = sendEvent;

  var observer = new MutationObserver(safe('mutation', function (mutations) {
    if (!isSignificant(mutations, T.iframeSignificantNodes)) { return; }
    try {
      window.parent.postMessage({ type: M.childMessage, source: 'iframe', url: location.href }, '*');
    } catch (err) {
      recordError('postMessage', err);
    }
  }));
  observer.observe(document, { childList: true, subtree: true });
  window[M.observer] = observer;

  function teardown() {
    try { observer.disconnect(); } catch (err) {}
    teardownCommon();
    window[M.activeFlag] = false;
    window[M.observer] = null;
    window[M.sendEvent] = null;
    window[M.teardown] = null;
    return true;
  }
  window[M.teardown] = teardown;

  window[M.activeFlag] = true;
  installCapture(sendEvent);

  return { status: 'installed', frame: true };
"""


def wrap_iife(*sections: str) -> str:
    """Join script sections into one immediately-invoked function expression."""
    return "(function () {\n  'use strict';\n" + "\n".join(sections) + "\n})()"
