"""Header-only extraction of sender and recipient addresses.

Only ``From``, ``To`` and ``Cc`` are looked at.  Header blocks are parsed
with ``email.parser.HeaderParser`` so no body is ever walked.
"""

from __future__ import annotations

import email.header
import email.errors
import email.parser
import email.utils
from collections.abc import Mapping

from .addresses import Address, AddressSet

ADDRESS_HEADERS = ("From", "To", "Cc")


def parse_header_block(raw_bytes: bytes) -> dict[str, str]:
    """Parse a raw RFC 822 header block into the address-bearing fields.

    Absent headers map to an empty string.  Undecodable bytes are replaced
    rather than raising.
    """
    text = raw_bytes.decode("utf-8", errors="replace")
    headers = email.parser.HeaderParser().parsestr(text, headersonly=True)
    return {name: _unfold(str(headers.get(name, ""))) for name in ADDRESS_HEADERS}


def parse_address_list(value: str | None) -> list[Address]:
    """Parse an RFC 2822 address list into :class:`Address` entries.

    Malformed input yields fewer (or no) entries instead of an error.
    Group syntax and entries without an address are dropped.  A bare local
    mailbox such as ``postmaster`` is kept when it makes up a whole entry.
    """
    if not value:
        return []
    try:
        pairs = email.utils.getaddresses([value])
    except (ValueError, IndexError, email.errors.HeaderParseError):
        return []
    entries: list[str] | None = None
    found: list[Address] = []
    for name, addr in pairs:
        if not addr:
            continue
        if "@" not in addr:
            if entries is None:
                entries = [entry.strip() for entry in value.split(",")]
            if not _is_local_mailbox(addr, entries):
                continue
        found.append(Address(display_name=_decode_words(name), address=addr))
    return found


def extract_addresses(headers: Mapping[str, str]) -> AddressSet:
    """Collect every address found in the From, To and Cc values of *headers*."""
    found = AddressSet()
    for name in ADDRESS_HEADERS:
        found.merge(parse_address_list(headers.get(name) or ""))
    return found


def _is_local_mailbox(addr: str, entries: list[str]) -> bool:
    # getaddresses() keeps only the first word of free text, so the address
    # must be the entire entry, bare or in angle brackets.
    return any(entry == addr or entry.endswith(f"<{addr}>") for entry in entries)


def _unfold(value: str) -> str:
    return "".join(value.splitlines())


def _decode_words(value: str) -> str:
    """Decode RFC 2047 encoded words in a display name, if any."""
    if "=?" not in value:
        return value
    try:
        return str(email.header.make_header(email.header.decode_header(value)))
    except (email.errors.HeaderParseError, UnicodeDecodeError, LookupError):
        return value
