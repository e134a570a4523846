import os
import json
import base64
import ssl
import time
import uuid
import urllib.parse
import urllib.request
import urllib.error
from typing import TYPE_CHECKING

import certifi

from savesync.models import Platform, RemoteSave

if TYPE_CHECKING:
    from typing import Protocol

    class _RommClientDeps(Protocol):
        settings: dict
        def _log_debug(self, msg: str) -> None: ...


ROMS_PAGE_SIZE = 250


class RommClientMixin:
    """RomM HTTP API: the remote catalog the reconciler talks to."""

    def _romm_ssl_context(self):
        """SSL context for RomM connections. Respects user insecure toggle."""
        ctx = ssl.create_default_context(cafile=certifi.where())
        if self.settings.get("romm_allow_insecure_ssl", False):
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def _romm_auth_header(self):
        """Base64-encoded Basic Auth header value for RomM."""
        credentials = base64.b64encode(
            f"{self.settings['romm_user']}:{self.settings['romm_pass']}".encode()
        ).decode()
        return f"Basic {credentials}"

    def _romm_timeout(self):
        return float(self.settings.get("api_timeout", 30) or 30)

    def _romm_url(self, path):
        return self.settings["romm_url"].rstrip("/") + path

    def _romm_request(self, path):
        req = urllib.request.Request(self._romm_url(path), method="GET")
        req.add_header("Authorization", self._romm_auth_header())
        with urllib.request.urlopen(req, context=self._romm_ssl_context(), timeout=self._romm_timeout()) as resp:
            return json.loads(resp.read().decode())

    def _romm_request_bytes(self, path):
        encoded_path = urllib.parse.quote(path, safe="/:?=&@")
        req = urllib.request.Request(self._romm_url(encoded_path), method="GET")
        req.add_header("Authorization", self._romm_auth_header())
        with urllib.request.urlopen(req, context=self._romm_ssl_context(), timeout=self._romm_timeout()) as resp:
            total = resp.headers.get("Content-Length")
            data = resp.read()
        if total and int(total) != len(data):
            raise IOError(f"Download incomplete: got {len(data)} bytes, expected {total}")
        return data

    def _romm_upload_multipart(self, path, file_path, method="POST"):
        """Upload a file via multipart/form-data to RomM API."""
        boundary = uuid.uuid4().hex
        filename = os.path.basename(file_path)
        safe_filename = filename.replace('"', '\\"')

        with open(file_path, "rb") as f:
            file_data = f.read()

        body = b""
        body += f"--{boundary}\r\n".encode()
        body += f'Content-Disposition: form-data; name="saveFile"; filename="{safe_filename}"\r\n'.encode()
        body += b"Content-Type: application/octet-stream\r\n\r\n"
        body += file_data
        body += f"\r\n--{boundary}--\r\n".encode()

        req = urllib.request.Request(self._romm_url(path), data=body, method=method)
        req.add_header("Content-Type", f"multipart/form-data; boundary={boundary}")
        req.add_header("Authorization", self._romm_auth_header())
        with urllib.request.urlopen(req, context=self._romm_ssl_context(), timeout=self._romm_timeout()) as resp:
            return json.loads(resp.read().decode())

    # ── Retry ─────────────────────────────────────────────────────

    @staticmethod
    def _is_retryable(exc):
        """Check if an exception is a transient network error worth retrying.

        Retries on: timeouts, connection refused/reset, 5xx server errors.
        Does NOT retry on: 4xx client errors (400, 401, 403, 404, 409, etc.).
        """
        if isinstance(exc, urllib.error.HTTPError):
            return exc.code >= 500
        if isinstance(exc, (urllib.error.URLError, ConnectionError, TimeoutError)):
            return True
        return False

    def _with_retry(self, fn, *args, max_attempts=3, base_delay=1, **kwargs):
        """Call fn(*args, **kwargs) with exponential backoff retry.

        Delays: base_delay * 3^attempt (1s, 3s, 9s for defaults).
        Only retries on transient errors (see _is_retryable).
        """
        for attempt in range(max_attempts):
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if attempt < max_attempts - 1 and self._is_retryable(exc):
                    delay = base_delay * (3 ** attempt)
                    self._log_debug(
                        f"Retry {attempt + 1}/{max_attempts} after {delay}s: {exc}"
                    )
                    time.sleep(delay)
                else:
                    raise

    # ── Catalog operations ───────────────────────────────────────

    def _romm_get_platforms(self):
        result = self._with_retry(self._romm_request, "/api/platforms")
        return [Platform.from_api(p) for p in result or []]

    def _romm_get_saves_for_platform(self, platform_id):
        result = self._with_retry(self._romm_request, f"/api/saves?platform_id={int(platform_id)}")
        if isinstance(result, dict):
            result = result.get("items", result.get("saves", []))
        return [RemoteSave.from_api(s) for s in result or []]

    def _romm_get_rom_by_hash(self, crc_hash=None, sha1_hash=None):
        """Look a ROM up by checksum. Returns the ROM dict or None on no match."""
        params = {}
        if crc_hash:
            params["crc_hash"] = crc_hash
        if sha1_hash:
            params["sha1_hash"] = sha1_hash
        if not params:
            return None
        try:
            rom = self._with_retry(
                self._romm_request, f"/api/roms/by-hash?{urllib.parse.urlencode(params)}"
            )
        except urllib.error.HTTPError as e:
            if e.code == 404:
                return None
            raise
        if not isinstance(rom, dict) or not rom.get("id"):
            return None
        return rom

    def _romm_list_platform_roms(self, platform_id):
        """All catalog titles of a platform as [{"id", "name"}]."""
        games = []
        offset = 0
        while True:
            page = self._with_retry(
                self._romm_request,
                f"/api/roms?platform_ids={int(platform_id)}&limit={ROMS_PAGE_SIZE}&offset={offset}",
            )
            # API returns paginated envelope {"items": [...], "total": N}
            items = page.get("items", []) if isinstance(page, dict) else (page or [])
            games.extend({"id": r.get("id"), "name": r.get("name") or r.get("fs_name_no_ext", "")}
                         for r in items)
            if len(items) < ROMS_PAGE_SIZE:
                break
            offset += ROMS_PAGE_SIZE
        return games

    def _romm_download_save(self, download_path):
        return self._with_retry(self._romm_request_bytes, download_path)

    def _romm_upload_save(self, rom_id, file_path, emulator=""):
        params = f"rom_id={int(rom_id)}"
        if emulator:
            params += f"&emulator={urllib.parse.quote(emulator)}"
        result = self._with_retry(
            self._romm_upload_multipart, f"/api/saves?{params}", file_path
        )
        return RemoteSave.from_api(result or {})
