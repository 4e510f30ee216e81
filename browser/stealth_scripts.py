"""
Fingerprint-evasion JavaScript payloads.

Each payload is a self-contained IIFE so adapters can register them one
by one (per-page CDP scripts) or joined (context init scripts).  All of
them must be safe to run before any page script and more than once on
the same document.

Coverage:
- navigator.webdriver reports ``false``
- navigator.plugins / mimeTypes look like a desktop Chrome
- navigator.languages / language fixed to a realistic list
- permissions.query({name: 'notifications'}) resolves to ``denied``
- WebGL UNMASKED_VENDOR / UNMASKED_RENDERER report a common desktop GPU
- navigator.userAgent / platform override (used where the protocol has
  no native user-agent switch)
"""

import json
from typing import List, Optional

DEFAULT_LANGUAGES = ["en-US", "en"]
DEFAULT_WEBGL_VENDOR = "Google Inc. (NVIDIA)"
DEFAULT_WEBGL_RENDERER = (
    "ANGLE (NVIDIA, NVIDIA GeForce GTX 1650 Direct3D11 vs_5_0 ps_5_0,"
    " D3D11)"
)

# ============================================================================
# 1. AUTOMATION FLAG
# ============================================================================
NAVIGATOR_WEBDRIVER = """
(function() {
    'use strict';
    try {
        delete Object.getPrototypeOf(navigator).webdriver;
    } catch (e) {}
    Object.defineProperty(Object.getPrototypeOf(navigator), 'webdriver', {
        get: () => false,
        configurable: true,
        enumerable: true
    });
})();
"""

# ============================================================================
# 2. PLUGINS / MIME TYPES
# ============================================================================
NAVIGATOR_PLUGINS = """
(function() {
    'use strict';
    if (navigator.plugins && navigator.plugins.length > 0) return;
    const pdfMime = {
        type: 'application/pdf',
        suffixes: 'pdf',
        description: 'Portable Document Format'
    };
    const names = [
        'PDF Viewer',
        'Chrome PDF Viewer',
        'Chromium PDF Viewer',
        'Microsoft Edge PDF Viewer',
        'WebKit built-in PDF'
    ];
    const plugins = names.map((name) => {
        const plugin = {
            name: name,
            filename: 'internal-pdf-viewer',
            description: 'Portable Document Format',
            length: 1,
            0: pdfMime
        };
        plugin.item = (i) => (i === 0 ? pdfMime : null);
        plugin.namedItem = (t) => (t === pdfMime.type ? pdfMime : null);
        return plugin;
    });
    const pluginArray = Object.create(
        typeof PluginArray !== 'undefined' ? PluginArray.prototype : Object.prototype
    );
    plugins.forEach((p, i) => { pluginArray[i] = p; });
    Object.defineProperty(pluginArray, 'length', { get: () => plugins.length });
    pluginArray.item = (i) => plugins[i] || null;
    pluginArray.namedItem = (n) => plugins.find((p) => p.name === n) || null;
    pluginArray.refresh = () => undefined;

    const mimeArray = Object.create(
        typeof MimeTypeArray !== 'undefined' ? MimeTypeArray.prototype : Object.prototype
    );
    mimeArray[0] = pdfMime;
    Object.defineProperty(mimeArray, 'length', { get: () => 1 });
    mimeArray.item = (i) => (i === 0 ? pdfMime : null);
    mimeArray.namedItem = (t) => (t === pdfMime.type ? pdfMime : null);

    Object.defineProperty(navigator, 'plugins', {
        get: () => pluginArray, configurable: true
    });
    Object.defineProperty(navigator, 'mimeTypes', {
        get: () => mimeArray, configurable: true
    });
})();
"""

# ============================================================================
# 3. LANGUAGES (templated)
# ============================================================================
_NAVIGATOR_LANGUAGES_TEMPLATE = """
(function() {
    'use strict';
    const languages = Object.freeze(%(languages)s);
    Object.defineProperty(navigator, 'languages', {
        get: () => languages, configurable: true
    });
    Object.defineProperty(navigator, 'language', {
        get: () => languages[0], configurable: true
    });
})();
"""

# ============================================================================
# 4. PERMISSIONS
# ============================================================================
PERMISSIONS_QUERY = """
(function() {
    'use strict';
    if (!navigator.permissions || !navigator.permissions.query) return;
    const originalQuery = navigator.permissions.query.bind(navigator.permissions);
    navigator.permissions.query = function(descriptor) {
        if (descriptor && descriptor.name === 'notifications') {
            return Promise.resolve({ state: 'denied', onchange: null });
        }
        return originalQuery(descriptor);
    };
})();
"""

# ============================================================================
# 5. WEBGL VENDOR / RENDERER (templated)
# ============================================================================
_WEBGL_VENDOR_TEMPLATE = """
(function() {
    'use strict';
    const VENDOR = %(vendor)s;
    const RENDERER = %(renderer)s;
    const patch = (proto) => {
        if (!proto) return;
        const original = proto.getParameter;
        proto.getParameter = function(param) {
            if (param === 0x9245) return VENDOR;    // UNMASKED_VENDOR_WEBGL
            if (param === 0x9246) return RENDERER;  // UNMASKED_RENDERER_WEBGL
            return original.call(this, param);
        };
    };
    if (typeof WebGLRenderingContext !== 'undefined') {
        patch(WebGLRenderingContext.prototype);
    }
    if (typeof WebGL2RenderingContext !== 'undefined') {
        patch(WebGL2RenderingContext.prototype);
    }
})();
"""

# ============================================================================
# USER-AGENT OVERRIDE (templated)
# ============================================================================
_USER_AGENT_TEMPLATE = """
(function() {
    'use strict';
    const UA = %(user_agent)s;
    const PLATFORM = %(platform)s;
    Object.defineProperty(Object.getPrototypeOf(navigator), 'userAgent', {
        get: () => UA, configurable: true
    });
    Object.defineProperty(Object.getPrototypeOf(navigator), 'platform', {
        get: () => PLATFORM, configurable: true
    });
})();
"""


def get_languages_script(languages: Optional[List[str]] = None) -> str:
    return _NAVIGATOR_LANGUAGES_TEMPLATE % {
        "languages": json.dumps(languages or DEFAULT_LANGUAGES),
    }


def get_webgl_script(
    vendor: str = DEFAULT_WEBGL_VENDOR,
    renderer: str = DEFAULT_WEBGL_RENDERER,
) -> str:
    return _WEBGL_VENDOR_TEMPLATE % {
        "vendor": json.dumps(vendor),
        "renderer": json.dumps(renderer),
    }


def get_user_agent_script(user_agent: str, platform: str) -> str:
    return _USER_AGENT_TEMPLATE % {
        "user_agent": json.dumps(user_agent),
        "platform": json.dumps(platform),
    }
