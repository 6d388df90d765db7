"""Server-config hardening for the uploads directory.

Two rule files are managed:

- ``.htaccess`` (Apache) -- always written. The devmode block is placed at
  the top of the file.
- ``web.config`` (IIS) -- written only when the server software identifies
  as ``Microsoft-IIS``. The devmode block follows any existing content so
  the XML declaration stays first.

Each block sits between BEGIN/END markers. Rewriting or removing a block
touches nothing outside its markers, so rules added by other tools survive.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from devmode.errors import FilesystemError

logger = logging.getLogger(__name__)

HTACCESS_NAME = ".htaccess"
WEBCONFIG_NAME = "web.config"
PROBE_NAME = "devmode-test.php"
PROBE_MARKER = "PHP_EXECUTION_ALLOWED"

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

PHP_EXTENSIONS = ("php", "php3", "php4", "php5", "php7", "php8", "phtml", "pht", "phps")

# IIS handler names removed so uploads never reach the PHP FastCGI module.
_FASTCGI_HANDLERS = (
    "PHP_via_FastCGI",
    "PHP74_via_FastCGI",
    "PHP80_via_FastCGI",
    "PHP81_via_FastCGI",
    "PHP82_via_FastCGI",
    "PHP83_via_FastCGI",
)
_BLOCK_HANDLERS = (
    ("PHP_Block", "php"),
    ("PHP3_Block", "php3"),
    ("PHP4_Block", "php4"),
    ("PHP5_Block", "php5"),
    ("PHTML_Block", "phtml"),
)

HTACCESS_BEGIN = "# BEGIN DevMode Protection"
HTACCESS_END = "# END DevMode Protection"
WEBCONFIG_BEGIN = "<!-- BEGIN DevMode Protection -->"
WEBCONFIG_END = "<!-- END DevMode Protection -->"

# The trailing blank line written after a block belongs to the block.
_HTACCESS_BLOCK = re.compile(
    re.escape(HTACCESS_BEGIN) + r".*?" + re.escape(HTACCESS_END) + r"(?:\r?\n){0,2}",
    re.S,
)
_WEBCONFIG_BLOCK = re.compile(
    re.escape(WEBCONFIG_BEGIN) + r".*?" + re.escape(WEBCONFIG_END) + r"(?:\r?\n){0,2}",
    re.S,
)


def htaccess_rules() -> str:
    """The Apache rule block, markers included."""
    pattern = "|".join(PHP_EXTENSIONS)
    lines = [
        HTACCESS_BEGIN,
        "# Prevent execution of PHP files in uploads directory",
        "<IfModule mod_php7.c>",
        "    php_flag engine off",
        "</IfModule>",
        "<IfModule mod_php8.c>",
        "    php_flag engine off",
        "</IfModule>",
        f'<FilesMatch "\\.({pattern})$">',
        "    <IfModule mod_authz_core.c>",
        "        Require all denied",
        "    </IfModule>",
        "    <IfModule !mod_authz_core.c>",
        "        Order allow,deny",
        "        Deny from all",
        "    </IfModule>",
        "</FilesMatch>",
        HTACCESS_END,
    ]
    return "\n".join(lines) + "\n\n"


def webconfig_rules() -> str:
    """The IIS rule block, markers included."""
    removes = "\n".join(
        f'            <remove name="{name}" />' for name in _FASTCGI_HANDLERS
    )
    adds = "\n".join(
        f'            <add name="{name}" path="*.{ext}" verb="*" type="" '
        f'resourceType="Unspecified" requireAccess="None" preCondition="" '
        f'responseBufferLimit="4194304" />'
        for name, ext in _BLOCK_HANDLERS
    )
    denied = "\n".join(
        f'                    <add fileExtension=".{ext}" allowed="false" />'
        for ext in PHP_EXTENSIONS
    )
    return (
        f"{WEBCONFIG_BEGIN}\n"
        "<configuration>\n"
        "    <system.webServer>\n"
        "        <handlers>\n"
        f"{removes}\n"
        f"{adds}\n"
        "        </handlers>\n"
        "        <security>\n"
        "            <requestFiltering>\n"
        "                <fileExtensions>\n"
        f"{denied}\n"
        "                </fileExtensions>\n"
        "            </requestFiltering>\n"
        "        </security>\n"
        "    </system.webServer>\n"
        "</configuration>\n"
        f"{WEBCONFIG_END}\n\n"
    )


def strip_htaccess_block(content: str) -> str:
    return _HTACCESS_BLOCK.sub("", content)


def strip_webconfig_block(content: str) -> str:
    return _WEBCONFIG_BLOCK.sub("", content)


@dataclass
class HardeningStatus:
    """Read-only snapshot of the uploads directory rules."""

    uploads_path: str
    htaccess_exists: bool = False
    htaccess_protected: bool = False
    webconfig_exists: bool = False
    webconfig_protected: bool = False
    writable: bool = False

    @property
    def is_protected(self) -> bool:
        return self.htaccess_protected or self.webconfig_protected


@dataclass
class ProbeResult:
    """Outcome of requesting a PHP file from the uploads directory."""

    status: str  # blocked | allowed | unknown | error
    message: str


class UploadsHardener:
    """Writes and removes the devmode rule blocks in the uploads directory."""

    def __init__(self, uploads_dir: Path, server_software: str = "") -> None:
        self._uploads_dir = Path(uploads_dir)
        self._server_software = server_software or ""

    @property
    def uploads_dir(self) -> Path:
        return self._uploads_dir

    @property
    def is_iis(self) -> bool:
        return "microsoft-iis" in self._server_software.lower()

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _target(self, name: str) -> Path:
        """Resolve a rule file, refusing anything outside the uploads dir."""
        base = self._uploads_dir.resolve()
        path = (self._uploads_dir / name).resolve()
        if path.parent != base:
            raise FilesystemError(f"{name} resolves outside {base}: {path}")
        return path

    def _read(self, name: str) -> Optional[str]:
        path = self._target(name)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise FilesystemError(f"Cannot read {path}: {exc}") from exc

    def _write(self, name: str, content: str) -> None:
        path = self._target(name)
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise FilesystemError(f"Cannot write {path}: {exc}") from exc

    def _unlink(self, name: str) -> None:
        path = self._target(name)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Cannot delete {path}: {exc}") from exc

    def _has_block(self, name: str, marker: str) -> bool:
        try:
            content = self._read(name)
        except FilesystemError as exc:
            logger.error("DevMode: %s", exc)
            return False
        return content is not None and marker in content

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def _write_htaccess(self) -> None:
        existing = self._read(HTACCESS_NAME) or ""
        self._write(HTACCESS_NAME, htaccess_rules() + strip_htaccess_block(existing))

    def _write_webconfig(self) -> None:
        existing = self._read(WEBCONFIG_NAME)
        if existing is None:
            existing = XML_DECLARATION + "\n"
        self._write(WEBCONFIG_NAME, strip_webconfig_block(existing) + webconfig_rules())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply_protection(self) -> bool:
        """Write the rule blocks. Returns False and logs on any failure."""
        if not self._uploads_dir.is_dir():
            logger.error("DevMode: uploads directory %s does not exist", self._uploads_dir)
            return False
        try:
            self._write_htaccess()
            if self.is_iis:
                self._write_webconfig()
        except FilesystemError as exc:
            logger.error("DevMode: failed to apply uploads protection: %s", exc)
            return False
        return True

    def remove_protection(self) -> bool:
        """Strip the rule blocks, deleting files that end up empty."""
        if not self._uploads_dir.is_dir():
            return False
        try:
            content = self._read(HTACCESS_NAME)
            if content is not None:
                content = strip_htaccess_block(content)
                if content.strip() == "":
                    self._unlink(HTACCESS_NAME)
                else:
                    self._write(HTACCESS_NAME, content)

            content = self._read(WEBCONFIG_NAME)
            if content is not None:
                content = strip_webconfig_block(content)
                if content.strip() in ("", XML_DECLARATION):
                    self._unlink(WEBCONFIG_NAME)
                else:
                    self._write(WEBCONFIG_NAME, content)
        except FilesystemError as exc:
            logger.error("DevMode: failed to remove uploads protection: %s", exc)
            return False
        return True

    def status(self) -> HardeningStatus:
        htaccess = self._uploads_dir / HTACCESS_NAME
        webconfig = self._uploads_dir / WEBCONFIG_NAME
        result = HardeningStatus(
            uploads_path=str(self._uploads_dir),
            htaccess_exists=htaccess.exists(),
            webconfig_exists=webconfig.exists(),
            writable=os.access(self._uploads_dir, os.W_OK),
        )
        if result.htaccess_exists:
            result.htaccess_protected = self._has_block(HTACCESS_NAME, HTACCESS_BEGIN)
        if result.webconfig_exists:
            result.webconfig_protected = self._has_block(WEBCONFIG_NAME, WEBCONFIG_BEGIN)
        return result

    def probe_execution(
        self, base_url: str, client: Optional[httpx.Client] = None
    ) -> ProbeResult:
        """Check over HTTP whether the server really refuses PHP in uploads.

        ``base_url`` is the public URL of the uploads directory.
        """
        probe = self._uploads_dir / PROBE_NAME
        try:
            probe.write_text(f'<?php echo "{PROBE_MARKER}"; ?>', encoding="utf-8")
        except OSError:
            return ProbeResult("error", "Cannot write test file")

        url = base_url.rstrip("/") + "/" + PROBE_NAME
        owns_client = client is None
        client = client or httpx.Client(timeout=5, verify=False)
        try:
            response = client.get(url)
        except httpx.HTTPError as exc:
            return ProbeResult("error", f"HTTP request failed: {exc}")
        finally:
            probe.unlink(missing_ok=True)
            if owns_client:
                client.close()

        code = response.status_code
        if code in (403, 404):
            return ProbeResult("blocked", f"PHP execution is blocked (HTTP {code})")
        if PROBE_MARKER in response.text:
            return ProbeResult("allowed", "PHP execution is NOT blocked")
        return ProbeResult("unknown", f"Unable to determine status (HTTP {code})")
