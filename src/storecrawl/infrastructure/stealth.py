"""
Anti-detection bundle.

JavaScript fragments injected into every new page before any site script
runs. They hide automation signals that bot detectors check for and give
each page a seeded, internally consistent fingerprint.

The bundle is declarative: ``build_stealth_script`` assembles it once from
``StealthPageSettings`` at page creation.
"""

import json
import random
from typing import Optional

from storecrawl.browser_config import StealthPageSettings


STEALTH_SCRIPTS = {
    "webdriver": """
        // Hide navigator.webdriver
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined,
            configurable: true
        });
    """,
    "automation_signals": """
        // Remove ChromeDriver/CDP globals and add window.chrome.runtime
        for (const key of Object.keys(window)) {
            if (key.startsWith('cdc_') || key.startsWith('$cdc_')) {
                try { delete window[key]; } catch (e) {}
            }
        }
        if (!window.chrome) {
            window.chrome = {};
        }
        if (!window.chrome.runtime) {
            window.chrome.runtime = {
                id: undefined,
                connect: function() {},
                sendMessage: function() {},
                onMessage: { addListener: function() {} },
                onConnect: { addListener: function() {} }
            };
        }
        const originalQuery = window.navigator.permissions && window.navigator.permissions.query;
        if (originalQuery) {
            window.navigator.permissions.query = (parameters) => (
                parameters.name === 'notifications' ?
                    Promise.resolve({ state: Notification.permission }) :
                    originalQuery(parameters)
            );
        }
    """,
    "plugins": """
        // Add realistic plugins array
        Object.defineProperty(navigator, 'plugins', {
            get: () => {
                const plugins = [
                    { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
                    { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
                    { name: 'Native Client', filename: 'internal-nacl-plugin' }
                ];
                plugins.item = (index) => plugins[index];
                plugins.namedItem = (name) => plugins.find(p => p.name === name);
                plugins.refresh = () => {};
                return plugins;
            },
            configurable: true
        });
    """,
}

# Fingerprint templates, filled in per page from a seeded RNG
_LANGUAGES_TEMPLATE = """
        Object.defineProperty(navigator, 'languages', {{
            get: () => {languages},
            configurable: true
        }});
"""

_FINGERPRINT_TEMPLATE = """
        Object.defineProperty(navigator, 'hardwareConcurrency', {{
            get: () => {hardware_concurrency},
            configurable: true
        }});
        Object.defineProperty(navigator, 'deviceMemory', {{
            get: () => {device_memory},
            configurable: true
        }});
        const getParameter = WebGLRenderingContext.prototype.getParameter;
        WebGLRenderingContext.prototype.getParameter = function(parameter) {{
            if (parameter === 37445) {{
                return {webgl_vendor};
            }}
            if (parameter === 37446) {{
                return {webgl_renderer};
            }}
            return getParameter.apply(this, arguments);
        }};
        const toDataURL = HTMLCanvasElement.prototype.toDataURL;
        HTMLCanvasElement.prototype.toDataURL = function() {{
            const ctx = this.getContext('2d');
            if (ctx && this.width && this.height) {{
                const pixel = ctx.getImageData(0, 0, 1, 1);
                pixel.data[0] = (pixel.data[0] + {canvas_noise}) % 256;
                ctx.putImageData(pixel, 0, 0);
            }}
            return toDataURL.apply(this, arguments);
        }};
"""

WEBGL_PROFILES = [
    ("Intel Inc.", "Intel Iris OpenGL Engine"),
    ("Google Inc. (Intel)", "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0)"),
    ("Google Inc. (NVIDIA)", "ANGLE (NVIDIA, NVIDIA GeForce GTX 1660 Direct3D11 vs_5_0 ps_5_0)"),
    ("Google Inc. (AMD)", "ANGLE (AMD, AMD Radeon RX 580 Direct3D11 vs_5_0 ps_5_0)"),
]


def build_stealth_script(settings: StealthPageSettings, seed: Optional[int] = None) -> str:
    """
    Assemble the init script for one page.

    Args:
        settings: Page fingerprint settings
        seed: Fingerprint seed. A fresh random seed is drawn when None.

    Returns:
        JavaScript source to register with ``add_init_script``
    """
    features = settings.features
    parts = []

    if features.spoof_webdriver:
        parts.append(STEALTH_SCRIPTS["webdriver"])
    if features.mask_automation_signals:
        parts.append(STEALTH_SCRIPTS["automation_signals"])
    if features.simulate_plugins:
        parts.append(STEALTH_SCRIPTS["plugins"])

    parts.append(_LANGUAGES_TEMPLATE.format(languages=json.dumps(settings.languages)))

    if features.randomize_fingerprint:
        rng = random.Random(seed)
        vendor, renderer = rng.choice(WEBGL_PROFILES)
        parts.append(
            _FINGERPRINT_TEMPLATE.format(
                hardware_concurrency=rng.choice([4, 8, 12, 16]),
                device_memory=rng.choice([4, 8]),
                webgl_vendor=json.dumps(vendor),
                webgl_renderer=json.dumps(renderer),
                canvas_noise=rng.randint(1, 5),
            )
        )

    return "\n".join(parts)
