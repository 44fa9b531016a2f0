"""
Breached-password check against the Have I Been Pwned range API.

Only the first five hex characters of the password's SHA-1 leave the host;
the rest of the hash is matched locally against the returned
``SUFFIX:COUNT`` lines.
"""

import hashlib
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum

from defensys.branding import console, ds_print
from defensys.settings import PwnedSettings

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 5


class BreachStatus(Enum):
    NOT_FOUND = "not-found"
    FOUND = "found"
    RESOLVER_ERROR = "resolver-error"

    @property
    def exit_code(self) -> int:
        return {"not-found": 0, "found": 2, "resolver-error": 3}[self.value]


@dataclass
class BreachResult:
    status: BreachStatus
    count: int = 0
    prefix: str = ""
    error: str | None = None


def split_hash(password: str) -> tuple[str, str]:
    """Upper-case SHA-1 hex of ``password`` split into (prefix, suffix)."""
    digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()
    return digest[:PREFIX_LENGTH], digest[PREFIX_LENGTH:]


def parse_range_response(body: str) -> dict[str, int]:
    """Parse ``SUFFIX:COUNT`` lines into a suffix -> count map."""
    counts = {}
    for line in body.splitlines():
        suffix, sep, count = line.strip().partition(":")
        if not sep:
            continue
        try:
            counts[suffix.upper()] = int(count)
        except ValueError:
            logger.debug("Skipping malformed range line: %r", line)
    return counts


def check_password(password: str, settings: PwnedSettings | None = None) -> BreachResult:
    """
    Look ``password`` up without sending it, or its full hash, anywhere.

    A 404 for the prefix means no breached password shares it.
    """
    settings = settings or PwnedSettings()
    prefix, suffix = split_hash(password)
    url = f"{settings.api_url.rstrip('/')}/{prefix}"
    req = urllib.request.Request(url, headers={"User-Agent": settings.user_agent}, method="GET")

    try:
        with urllib.request.urlopen(req, timeout=settings.timeout) as response:
            body = response.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        if e.code == 404:
            return BreachResult(BreachStatus.NOT_FOUND, prefix=prefix)
        return BreachResult(BreachStatus.RESOLVER_ERROR, prefix=prefix, error=f"HTTP status {e.code}")
    except (urllib.error.URLError, OSError) as e:
        return BreachResult(BreachStatus.RESOLVER_ERROR, prefix=prefix, error=str(e))

    count = parse_range_response(body).get(suffix)
    if count:
        return BreachResult(BreachStatus.FOUND, count=count, prefix=prefix)
    return BreachResult(BreachStatus.NOT_FOUND, prefix=prefix)


def report(result: BreachResult) -> int:
    """Print ``result`` and return its exit code (0 safe, 2 pwned, 3 API error)."""
    if result.status is BreachStatus.FOUND:
        console.print("[red]-----------------------------------------------------[/red]")
        ds_print("WARNING: This password has been pwned!", "error")
        console.print(
            f"It has appeared in data breaches at least [yellow]{result.count}[/yellow] times.\n"
            "[red]Choose a different, unique password.[/red]"
        )
    elif result.status is BreachStatus.NOT_FOUND:
        ds_print("Password not found in the Have I Been Pwned database", "success")
        console.print("[dim](Password appears safe according to HIBP)[/dim]")
    else:
        ds_print(f"Failed to query the Have I Been Pwned API: {result.error}", "error")
        console.print("Please check your internet connection or the API status.")
    return result.status.exit_code


def run(password: str, settings: PwnedSettings | None = None) -> int:
    ds_print("Checking password against the Have I Been Pwned database...", "thinking")
    result = check_password(password, settings)
    logger.debug("Queried hash prefix %s", result.prefix)
    return report(result)
