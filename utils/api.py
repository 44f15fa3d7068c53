# utils/api.py
from __future__ import annotations

import os
import time
import requests
import logging
import random
from pathlib import Path
from typing import Dict, Any, Optional, Union, List
from urllib.parse import urljoin

from dotenv import load_dotenv

from models import SisImportOptions

REPO_ROOT = Path(__file__).resolve().parents[1]


def _load_env_if_opted_in() -> None:
    """
    Only load .env files when explicitly opted in
    - Set PYTHON_DOTENV_LOAD=1 to enable
    - PYTHON_DOTENV_DISABLE=1 always disables
    """
    if os.getenv("PYTHON_DOTENV_DISABLE") == "1":
        return
    if os.getenv("PYTHON_DOTENV_LOAD") != "1":
        return

    # repo defaults, then local overrides
    load_dotenv(str(REPO_ROOT / ".env"))
    load_dotenv(str(REPO_ROOT / ".env.local"), override=True)


# Do NOT load by default; tests control the environment.
_load_env_if_opted_in()

# --- Tunables ---------------------------------------------------------------
DEFAULT_TIMEOUT: tuple[float, float] = (5, 30)  # (connect, read) seconds
UPLOAD_TIMEOUT: tuple[float, float] = (5, 300)
DEFAULT_PER_PAGE = 100
USER_AGENT = "SisImport/1.0 (+https://example.org)"
API_PREFIX = "/api/v1"
SIS_IMPORT_PENDING_STATES = {"initializing", "created", "importing", "cleanup_batch", "restoring"}

# Allow overrides via env (e.g., CANVAS_HTTP_TIMEOUT="10,300")
_to = os.getenv("CANVAS_HTTP_TIMEOUT")
if _to:
    try:
        parts = [float(p.strip()) for p in _to.split(",")]
        if len(parts) == 2:
            DEFAULT_TIMEOUT = (parts[0], parts[1])  # type: ignore[assignment]
    except ValueError:
        pass

log = logging.getLogger(__name__)


class CanvasAPI:
    def __init__(self, base_url: str | None, token: str | None) -> None:
        if not base_url or not token:
            raise ValueError("CanvasAPI base_url and token are required (check your .env)")

        base = base_url.rstrip("/")
        if base.endswith(API_PREFIX):
            api_root = base
            host_root = base[: -len(API_PREFIX)]
        else:
            api_root = base + API_PREFIX
            host_root = base

        self.base_url = host_root + "/"
        self.api_root = api_root + "/"

        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "User-Agent": USER_AGENT,
        })

    # Accept endpoints with or without /api/v1 and build a full API URL
    def _full_url(self, endpoint: str) -> str:
        ep = (endpoint or "").strip()
        if ep.startswith("http://") or ep.startswith("https://"):
            return ep
        if ep.startswith(API_PREFIX):
            ep = ep[len(API_PREFIX):]
        ep = ep.lstrip("/")
        return urljoin(self.api_root, ep)

    def _backoff(self, delay: float) -> float:
        wait_time = delay + random.uniform(0, 0.25 * delay)
        time.sleep(wait_time)
        return wait_time

    # Basic retry/backoff for 429/5xx + timeouts
    def _request(self, method: str, url: str, *, timeout=None, **kwargs) -> requests.Response:
        max_attempts = 4
        delay = 1.0
        for attempt in range(1, max_attempts + 1):
            try:
                resp = self.session.request(method, url, timeout=timeout or DEFAULT_TIMEOUT, **kwargs)

                if resp.status_code == 429 and attempt < max_attempts:
                    retry_after = float(resp.headers.get("Retry-After", delay))
                    jitter = random.uniform(0, 0.25 * retry_after)
                    wait_time = retry_after + jitter
                    log.warning(
                        "Rate limited: 429 received. Retrying after %.2fs (attempt %s/%s)",
                        wait_time, attempt, max_attempts,
                        extra={"url": url, "retry_after": retry_after},
                    )
                    time.sleep(wait_time)
                    continue

                resp.raise_for_status()
                return resp

            except requests.HTTPError as e:
                status = getattr(e.response, "status_code", None)
                if status and status >= 500 and attempt < max_attempts:
                    wait_time = self._backoff(delay)
                    log.warning(
                        "Server error %s. Retrying after %.2fs (attempt %s/%s)",
                        status, wait_time, attempt, max_attempts,
                        extra={"url": url},
                    )
                    delay *= 2
                    continue
                raise

            except (requests.ConnectionError, requests.Timeout):
                if attempt < max_attempts:
                    wait_time = self._backoff(delay)
                    log.warning(
                        "Connection/timeout error. Retrying after %.2fs (attempt %s/%s)",
                        wait_time, attempt, max_attempts,
                        extra={"url": url},
                    )
                    delay *= 2
                    continue
                raise
        raise requests.HTTPError(f"{method} {url} failed after {max_attempts} attempts")

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """
        GET with transparent pagination.
        - If the endpoint returns a list, we return a combined list across pages.
        - If it returns a single object, we return that dict.
        """
        url: Optional[str] = self._full_url(endpoint)

        params = dict(params or {})
        params.setdefault("per_page", DEFAULT_PER_PAGE)

        results: List[Dict[str, Any]] = []
        first = True
        while url:
            # follow-ups use absolute next URLs that already carry the query
            r = self._request("GET", url, params=params if first else None)
            first = False
            data = r.json()

            if not isinstance(data, list):
                return data
            results.extend(data)
            url = self._next_link(r.headers)

        return results

    # ---- SIS imports -------------------------------------------------------

    def create_sis_import(
        self,
        account_id: int,
        archive: Path,
        *,
        options: Optional[SisImportOptions] = None,
    ) -> Dict[str, Any]:
        """
        Submit a zip of SIS CSVs: POST /accounts/:account_id/sis_imports.
        Returns the created SisImport object ({"id": ..., "workflow_state": ...}).
        """
        options = options or SisImportOptions()
        form: Dict[str, Any] = {"import_type": "instructure_csv", "extension": "zip"}
        if options.override_sis_stickiness:
            form["override_sis_stickiness"] = "true"
            if options.add_sis_stickiness:
                form["add_sis_stickiness"] = "true"
            if options.clear_sis_stickiness:
                form["clear_sis_stickiness"] = "true"

        payload = archive.read_bytes()  # bytes so retries can resend the body
        resp = self._multipart_post(
            self._full_url(f"/accounts/{account_id}/sis_imports"),
            data=form,
            files={"attachment": (archive.name, payload, "application/zip")},
        )
        body = self._json_or_empty(resp)
        if not isinstance(body.get("id"), int):
            raise RuntimeError(f"Canvas did not return a sis_import id: {body}")
        log.info("Created SIS import %s for account %s", body["id"], account_id)
        return body

    def get_sis_import(self, account_id: int, sis_import_id: int) -> Dict[str, Any]:
        data = self.get(f"/accounts/{account_id}/sis_imports/{sis_import_id}")
        return data if isinstance(data, dict) else {}

    def wait_for_sis_import(
        self,
        account_id: int,
        sis_import_id: int,
        *,
        poll_interval: float = 5.0,
        timeout: float = 3600.0,
    ) -> Dict[str, Any]:
        """Poll until the import leaves a pending state. Raises TimeoutError."""
        deadline = time.monotonic() + timeout
        while True:
            status = self.get_sis_import(account_id, sis_import_id)
            state = status.get("workflow_state")
            log.debug("SIS import %s state=%s progress=%s", sis_import_id, state, status.get("progress"))
            if state not in SIS_IMPORT_PENDING_STATES:
                return status
            if time.monotonic() >= deadline:
                raise TimeoutError(f"SIS import {sis_import_id} still {state} after {timeout:.0f}s")
            time.sleep(poll_interval)

    # ---- plumbing ----------------------------------------------------------

    def _next_link(self, headers: Dict[str, Any]) -> Optional[str]:
        """
        Extract the 'next' URL from an RFC5988 Link header.
        Accepts rel=next and rel="next". Returns None if not present.
        """
        link_hdr = headers.get("Link") or headers.get("link")
        if not link_hdr:
            return None
        for raw in link_hdr.split(","):
            parts = [p.strip() for p in raw.split(";")]
            if not parts or not (parts[0].startswith("<") and ">" in parts[0]):
                continue
            url_part = parts[0]
            rel_parts = [p.lower() for p in parts[1:]]
            if any(r == "rel=next" or r == 'rel="next"' for r in rel_parts):
                return url_part[url_part.find("<") + 1 : url_part.find(">")]
        return None

    def _multipart_post(self, url: str, *, data: Dict[str, Any], files: Dict[str, Any]) -> requests.Response:
        """
        multipart/form-data POST for attachments. Retries on 5xx/timeouts;
        strips any default JSON content-type so requests sets the boundary.
        """
        headers = self.session.headers.copy()
        headers.pop("Content-Type", None)

        max_attempts = 4
        delay = 1.0
        last_err: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                resp = self.session.post(url, data=data, files=files, headers=headers, timeout=UPLOAD_TIMEOUT)
                if 500 <= resp.status_code < 600:
                    raise requests.HTTPError(f"{resp.status_code} server error", response=resp)
                resp.raise_for_status()
                return resp
            except (requests.Timeout, requests.ConnectionError, requests.HTTPError) as e:
                last_err = e
                status = getattr(getattr(e, "response", None), "status_code", None)
                if attempt == max_attempts or not (status is None or status >= 500):
                    break
                wait_time = self._backoff(delay)
                log.warning(
                    "Upload failed (%s). Retrying after %.2fs (attempt %s/%s)",
                    status or type(e).__name__, wait_time, attempt, max_attempts,
                    extra={"url": url},
                )
                delay *= 2
        if last_err is not None:
            raise last_err
        raise requests.HTTPError("multipart upload failed")

    @staticmethod
    def _json_or_empty(resp: requests.Response) -> dict:
        """
        Return parsed JSON if the response looks like JSON; otherwise {}.
        Safely handles 204, empty bodies, and malformed JSON.
        """
        if resp.status_code == 204 or not resp.content:
            return {}
        ctype = resp.headers.get("Content-Type", "")
        if "json" in ctype.lower():
            try:
                body = resp.json()
            except ValueError:
                return {}
            return body if isinstance(body, dict) else {}
        return {}


def target_api_from_env() -> Optional["CanvasAPI"]:
    """Client for CANVAS_TARGET_URL / CANVAS_TARGET_TOKEN; None when either is unset."""
    url = os.getenv("CANVAS_TARGET_URL")
    token = os.getenv("CANVAS_TARGET_TOKEN")
    if url and token:
        return CanvasAPI(url, token)
    return None


__all__ = [
    "CanvasAPI",
    "DEFAULT_TIMEOUT",
    "DEFAULT_PER_PAGE",
    "USER_AGENT",
    "API_PREFIX",
    "target_api_from_env",
]
