"""
NodeCode Preview Compiler — Document Templates
==============================================
Fixed text that the emitter stitches around user content.

  PLACEHOLDER_DOCUMENT   returned for a preview with nothing wired into it
  bootstrap_script()     sandbox side of the runtime bridge, injected first
                         in <head> so it sees every later console call
  wrap_script()          isolates one user script fragment
  escape_block()         neutralises closing tags inside user content

Everything here is deterministic: no clocks, no random ids.
"""

from __future__ import annotations

import json
import re

BRIDGE_SOURCE = "preview-iframe"

PLACEHOLDER_DOCUMENT = """<!DOCTYPE html>
<html>
  <body style="background-color: #0f0f11; color: #71717a; font-family: sans-serif; height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0;">
    <div style="text-align: center;">
      <p>Connect a <strong>CODE Canvas</strong> (index.html or App.js) to the artifact port.</p>
    </div>
  </body>
</html>
"""

ROOT_MOUNT_MARKUP = '<div id="root"></div>'


# ── Bridge bootstrap ──────────────────────────────────────────────────────────

_BOOTSTRAP_TEMPLATE = """(function() {
  var NODE_ID = __NODE_ID__;
  var SOURCE = __SOURCE__;
  var original = {
    log: console.log, warn: console.warn, error: console.error, info: console.info
  };

  function post(envelope) {
    envelope.source = SOURCE;
    envelope.nodeId = NODE_ID;
    envelope.timestamp = Date.now();
    window.parent.postMessage(envelope, '*');
  }

  function stringify(arg) {
    if (arg === undefined) return 'undefined';
    if (arg === null) return 'null';
    if (typeof arg === 'object') return JSON.stringify(arg);
    return String(arg);
  }

  function send(type, args) {
    var message;
    try {
      message = Array.prototype.map.call(args, stringify).join(' ');
    } catch (e) {
      type = 'error';
      message = 'Log serialization failed: ' + e;
    }
    try { post({ type: type, message: message }); } catch (e) {}
  }

  ['log', 'warn', 'error', 'info'].forEach(function(type) {
    console[type] = function() {
      original[type].apply(console, arguments);
      send(type, arguments);
    };
  });

  window.onerror = function(msg, url, line, col, error) {
    send('error', [msg + ' (Line ' + line + ')']);
    return false;
  };

  window.sharedState = null;
  window.broadcastState = function(payload) {
    window.sharedState = payload;
    post({ type: 'BROADCAST_STATE', payload: payload });
  };

  window.addEventListener('message', function(event) {
    var data = event.data;
    if (!data || data.type !== 'STATE_UPDATE') return;
    window.sharedState = data.payload;
    window.dispatchEvent(new CustomEvent('stateupdate', { detail: data.payload }));
  });

  post({ type: 'IFRAME_READY' });
})();"""


def bootstrap_script(node_id: str) -> str:
    """Bridge bootstrap for one preview node, ready to drop into a <script> block."""
    return (
        _BOOTSTRAP_TEMPLATE
        .replace("__NODE_ID__", escape_block(json.dumps(node_id)))
        .replace("__SOURCE__", json.dumps(BRIDGE_SOURCE))
    )


# ── Fragment helpers ──────────────────────────────────────────────────────────

_CLOSING_TAG = re.compile(r"</(script|style)", re.IGNORECASE)


def escape_block(text: str) -> str:
    # "<\/script" is still valid JS and CSS but no longer ends the block
    return _CLOSING_TAG.sub(lambda m: "<\\/" + m.group(1), text)


def wrap_script(fragment: str) -> str:
    return "try {\n" + fragment + "\n} catch (err) { console.error(err); }"
