# -------------------- Chrome-Start mit Debug-Port -----------------------------
import os
import subprocess
import sys
import time
from urllib.parse import urlparse

from playwright.async_api import async_playwright

from .console import console

DEBUG_PORT = int(os.getenv("MP_DEBUG_PORT", "9222"))
START_URL = "https://www.messenger.com/marketplace"
MESSENGER_HOSTS = ("www.messenger.com", "messenger.com", "www.facebook.com", "facebook.com")

_DEFAULT_CHROME_PATHS = {
    "win32": r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    "darwin": "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
}


def chrome_path() -> str:
    return os.getenv("MP_CHROME_PATH") or _DEFAULT_CHROME_PATHS.get(sys.platform, "google-chrome")


def start_chrome_with_debug_port(port: int = DEBUG_PORT):
    console.print("[cyan]Beende alle laufenden Chrome-Prozesse...[/cyan]")
    kill = ["taskkill", "/IM", "chrome.exe", "/F"] if sys.platform == "win32" else ["pkill", "-f", "chrome"]
    try:
        subprocess.run(kill, capture_output=True)
    except Exception as e:
        console.print(f"[yellow]Warnung: Konnte Chrome nicht beenden: {e}[/yellow]")

    profile_dir = os.path.join(os.getcwd(), "ChromeRemoteProfile")
    os.makedirs(profile_dir, exist_ok=True)

    console.print(f"[cyan]Starte Chrome mit Debug-Port {port}...[/cyan]")
    subprocess.Popen([
        chrome_path(),
        f"--remote-debugging-port={port}",
        f"--user-data-dir={profile_dir}",
        START_URL,
    ])
    time.sleep(2)


def is_messenger_url(url: str) -> bool:
    try:
        host = (urlparse(url).hostname or "").lower()
    except Exception:
        return False
    return host in MESSENGER_HOSTS


# -------------------- Playwright-Verbindung ----------------------------------
async def connect_chrome(port: int = DEBUG_PORT):
    pw = await async_playwright().start()
    try:
        browser = await pw.chromium.connect_over_cdp(f"http://localhost:{port}")
    except Exception as e:
        await pw.stop()
        raise RuntimeError("Konnte nicht zu Chrome verbinden.") from e

    if not browser.contexts:
        ctx = await browser.new_context()
    else:
        ctx = browser.contexts[0]

    page = ctx.pages[0] if ctx.pages else await ctx.new_page()
    page = await ensure_active_page(page)
    if not is_messenger_url(page.url):
        await page.goto(START_URL, wait_until="domcontentloaded")
    return pw, browser, ctx, page


async def ensure_active_page(page):
    """Bevorzugt den Messenger-Tab, sonst den zuletzt geöffneten http(s)-Tab."""
    if page is None:
        return page
    try:
        pages = list(page.context.pages)
    except Exception:
        pages = []

    candidate = None
    for p in reversed(pages):  # zuletzt geöffneter Tab zuerst prüfen
        try:
            if p.is_closed():
                continue
            url = p.url
        except Exception:
            continue
        if is_messenger_url(url):
            candidate = p
            break
        if candidate is None and url.startswith(("http://", "https://")):
            candidate = p
    if candidate:
        page = candidate

    try:
        await page.bring_to_front()
    except Exception:
        pass
    try:
        await page.wait_for_load_state("domcontentloaded")
    except Exception:
        pass
    return page
