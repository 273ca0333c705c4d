"""
Browser fingerprint settings for the catalog session.

The supermarket site sits behind bot protection, so the Playwright session
presents itself as an ordinary desktop Chrome in New Zealand.
"""

# Hide the most common automation tells before any page script runs
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined
});

window.chrome = {
    runtime: {},
    loadTimes: function() {},
    csi: function() {},
    app: {}
};

Object.defineProperty(navigator, 'languages', {
    get: () => ['en-NZ', 'en']
});

Object.defineProperty(navigator, 'hardwareConcurrency', {
    get: () => 8
});

const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications' ?
        Promise.resolve({ state: Notification.permission }) :
        originalQuery(parameters)
);
"""

STEALTH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-blink-features=AutomationControlled',
    '--disable-dev-shm-usage',
    '--disable-infobars',
    '--disable-background-timer-throttling',
    '--disable-backgrounding-occluded-windows',
    '--disable-renderer-backgrounding',
    '--lang=en-NZ,en',
]

STEALTH_HEADERS = {
    'Accept-Language': 'en-NZ,en;q=0.9',
    'Sec-Ch-Ua': '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
    'Sec-Ch-Ua-Mobile': '?0',
    'Sec-Ch-Ua-Platform': '"Windows"',
}

STEALTH_USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'


async def apply_stealth(page):
    """Install the stealth script on a Playwright page."""
    await page.add_init_script(STEALTH_SCRIPT)


def get_stealth_context_options():
    """
    Get browser context options for an Auckland desktop browser.

    Returns:
        Dictionary of context options
    """
    return {
        'user_agent': STEALTH_USER_AGENT,
        'viewport': {'width': 1920, 'height': 1080},
        'screen': {'width': 1920, 'height': 1080},
        'locale': 'en-NZ',
        'timezone_id': 'Pacific/Auckland',
        'color_scheme': 'light',
        'extra_http_headers': STEALTH_HEADERS,
        'java_script_enabled': True,
        'has_touch': False,
        'is_mobile': False,
        'device_scale_factor': 1,
    }
