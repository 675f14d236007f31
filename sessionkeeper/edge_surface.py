# -*- coding: utf-8 -*-
"""
Edge + selenium-wire backend for ``LoginSurface``.

dependency:
  pip install selenium selenium-wire
"""

from __future__ import annotations
import os, time, logging
from pathlib import Path
from typing import Optional

from seleniumwire import webdriver as wire_webdriver
from selenium.common.exceptions import NoSuchWindowException, WebDriverException
from selenium.webdriver.edge.options import Options as EdgeOptions
from selenium.webdriver.edge.service import Service as EdgeService

from .capture import CaptureSession, LoginSurface, SAML_ENDPOINT
from .config import BROWSER_PROFILE_DIR, WIRE_STORE_DIR
from .errors import CaptureError

log = logging.getLogger(__name__)

READ_FIELD_JS = (
    "var el = document.querySelector('input[name=\"' + arguments[0] + '\"]');"
    "return el ? el.value : null;"
)

# keep everything in one tab so the SAML POST happens where we listen
SAME_TAB_JS = r"""
(function(){
  window.open = function(u){ try{ location.href = u; }catch(e){} return window; };
  const patch = ()=>{ document.querySelectorAll('a[target="_blank"]').forEach(a=>a.setAttribute('target','_self')); };
  patch(); new MutationObserver(patch).observe(document.documentElement,{subtree:true,childList:true,attributes:true});
})();
"""


def edge_service() -> Optional[EdgeService]:
    """EDGE_DRIVER_PATH wins; otherwise Selenium Manager resolves msedgedriver."""
    p = os.getenv("EDGE_DRIVER_PATH")
    if p and Path(p).exists():
        return EdgeService(p)
    return None


def make_driver(silent: bool, profile_dir: Path = BROWSER_PROFILE_DIR):
    opts = EdgeOptions()
    opts.set_capability("pageLoadStrategy", "none")
    if silent:
        opts.add_argument("--headless=new")
    profile_dir.mkdir(parents=True, exist_ok=True)
    # persistent profile so the IdP session cookie survives between renewals
    opts.add_argument(f"--user-data-dir={profile_dir}")
    opts.add_argument("--disable-gpu")
    opts.add_argument("--no-sandbox")

    sw_opts = {
        "verify_ssl": False,
        "suppress_connection_errors": True,
        "mitm_http2": False,
        "scopes": [r".*signin\.aws\.amazon\.com\/saml.*"],
        "request_storage_base_dir": str(WIRE_STORE_DIR),
    }
    kwargs = {"seleniumwire_options": sw_opts, "options": opts}
    service = edge_service()
    if service:
        kwargs["service"] = service
    return wire_webdriver.Edge(**kwargs)


class EdgeLoginSurface(LoginSurface):
    def __init__(self, silent: bool = False, force_same_tab: bool = True):
        self.silent = silent
        self.force_same_tab = force_same_tab
        self.driver = None
        self.listener: Optional[CaptureSession] = None
        self._last_url = ""
        self._scanned = False

    def open(self, url: str, listener: CaptureSession) -> None:
        self.listener = listener
        try:
            self.driver = make_driver(self.silent)
        except WebDriverException as e:
            raise CaptureError(f"Couldn't start Edge: {e.msg or e}") from e
        self.driver.request_interceptor = self._intercept
        if self.force_same_tab:
            try:
                self.driver.execute_cdp_cmd("Page.addScriptToEvaluateOnNewDocument", {"source": SAME_TAB_JS})
            except WebDriverException as e:
                log.debug("same-tab patch not applied: %s", e)
        self.driver.get(url)

    def _intercept(self, request):
        # runs on the selenium-wire proxy thread
        if request.method != "POST" or not SAML_ENDPOINT.match(request.url or ""):
            return
        if self.listener and self.listener.on_request(request.url, request.method, request.body or b""):
            request.abort()

    def _read_field(self, name: str) -> Optional[str]:
        return self.driver.execute_script(READ_FIELD_JS, name)

    def wait_for_events(self, timeout: float) -> None:
        listener = self.listener
        if self.driver is None or listener is None:
            return
        try:
            if not self.driver.window_handles:
                listener.on_closed()
                return
            url = self.driver.current_url or ""
            ready = self.driver.execute_script("return document.readyState")
        except NoSuchWindowException:
            listener.on_closed()
            return
        except WebDriverException as e:
            log.debug("driver gone: %s", e)
            listener.on_closed()
            return

        if url != self._last_url:
            self._last_url = url
            self._scanned = False
            listener.on_navigated(url)
        if ready == "complete" and not self._scanned and not listener.done:
            self._scanned = True
            listener.on_page_loaded(url, self._read_field)
        if not listener.done:
            time.sleep(timeout)

    def close(self) -> None:
        drv, self.driver = self.driver, None
        if drv is None:
            return
        try:
            drv.quit()
        except WebDriverException as e:
            log.debug("quit failed: %s", e)
