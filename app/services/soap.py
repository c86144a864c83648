"""Game-world RPC: console commands over the worldserver's SOAP endpoint.

A failed or timed-out call does not prove the command did not run; callers
keep the purchase pending and re-check before sending again.
"""

import re
from dataclasses import dataclass
from xml.sax.saxutils import escape

import httpx

from app.core.config import get_settings
from app.core.logging import get_logger

log = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w\s.,!?'-]")
_NON_WORD = re.compile(r"\W")
_FAULT_RE = re.compile(r"<faultstring>([\s\S]*?)</faultstring>")

ENVELOPE = """<?xml version="1.0" encoding="utf-8"?>
<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/"
  xmlns:ns1="urn:TC"
  xmlns:xsd="http://www.w3.org/2001/XMLSchema"
  xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
  xmlns:SOAP-ENC="http://schemas.xmlsoap.org/soap/encoding/"
  SOAP-ENV:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
  <SOAP-ENV:Body>
    <ns1:executeCommand>
      <command>{command}</command>
    </ns1:executeCommand>
  </SOAP-ENV:Body>
</SOAP-ENV:Envelope>"""


@dataclass
class CommandResult:
    success: bool
    message: str


def sanitize(text: str) -> str:
    """Strip characters that could break out of a quoted console argument."""
    return _UNSAFE_CHARS.sub("", text)


def build_envelope(command: str) -> str:
    return ENVELOPE.format(command=escape(command, {'"': "&quot;", "'": "&apos;"}))


def build_send_items_command(character_name: str, subject: str, body: str, items: list[tuple[int, int]]) -> str:
    pairs = " ".join(f"{entry}:{count}" for entry, count in items)
    return f'.send items {_NON_WORD.sub("", character_name)} "{sanitize(subject)}" "{sanitize(body)}" {pairs}'


async def execute_command(command: str, client: httpx.AsyncClient | None = None) -> CommandResult:
    settings = get_settings()
    url = f"http://{settings.soap_host}:{settings.soap_port}/"
    headers = {
        "Content-Type": "text/xml; charset=utf-8",
        "SOAPAction": "urn:TC#executeCommand",
    }
    auth = httpx.BasicAuth(settings.soap_username, settings.soap_password)
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.soap_timeout_seconds)
    try:
        res = await client.post(url, content=build_envelope(command), headers=headers, auth=auth)
    except httpx.HTTPError as e:
        log.warning("soap_request_failed", error=str(e) or type(e).__name__)
        return CommandResult(False, str(e) or type(e).__name__)
    finally:
        if owns_client:
            await client.aclose()

    text = res.text
    if res.status_code >= 400:
        return CommandResult(False, f"SOAP HTTP {res.status_code}: {text[:500]}")
    if "faultstring" in text:
        match = _FAULT_RE.search(text)
        return CommandResult(False, match.group(1).strip() if match else "Unknown SOAP fault")
    return CommandResult(True, text)


async def send_items(
    character_name: str,
    subject: str,
    body: str,
    items: list[tuple[int, int]],
    client: httpx.AsyncClient | None = None,
) -> CommandResult:
    """Mail `items` ((entry, count) pairs) to a character through the game server."""
    if not items:
        return CommandResult(False, "No items to send")
    command = build_send_items_command(character_name, subject, body, items)
    result = await execute_command(command, client=client)
    log.info("soap_send_items", character=character_name, items=len(items), success=result.success)
    return result
