from __future__ import annotations

import logging
import re

from ..errors import NotFoundError
from .mapper import run_search

log = logging.getLogger(__name__)

# AD MaxValRange default
PAGE_SIZE = 1500

_RANGE_RE = re.compile(r"^(?P<attr>[^;]+);range=(?P<lo>\d+)-(?P<hi>\d+|\*)$", re.IGNORECASE)


class MembershipPager:
    """Retrieve every value of a multi-valued attribute via ranged requests.

    AD returns at most ``MaxValRange`` values per attribute; the rest has to be
    requested window by window as ``member;range=lo-hi`` until the server
    answers with an open-ended ``member;range=lo-*``.
    """

    def __init__(self, base_dn: str, page_size: int = PAGE_SIZE, attribute: str = "member") -> None:
        self.base_dn = base_dn
        self.page_size = page_size
        self.attribute = attribute

    def fetch_members(self, conn, group_filter: str, search_base: str | None = None) -> list[str]:
        base = search_base or self.base_dn
        members: list[str] = []
        lo = 0
        requests = 0
        while True:
            ranged = f"{self.attribute};range={lo}-{lo + self.page_size - 1}"
            entries = run_search(conn, base, group_filter, [ranged])
            requests += 1
            if not entries:
                raise NotFoundError(group_filter)

            raw = entries[0].get("raw_attributes") or {}
            done = True
            for name, values in raw.items():
                m = _RANGE_RE.match(str(name))
                if not m or m.group("attr").lower() != self.attribute.lower():
                    # Small groups come back without a range tag.
                    if str(name).lower() == self.attribute.lower():
                        members.extend(_decode(values))
                    continue
                members.extend(_decode(values))
                if m.group("hi") != "*":
                    done = False
            if done:
                break
            lo += self.page_size

        log.debug("Получено %d участников за %d запросов: %s", len(members), requests, group_filter)
        return members


def _decode(values) -> list[str]:
    return [v.decode("utf-8", errors="replace") if isinstance(v, (bytes, bytearray)) else str(v) for v in values or []]
