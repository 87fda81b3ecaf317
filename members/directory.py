# members/directory.py
"""Read-only address -> contact lookup backed by the community's members.json."""
import json
import logging
import os
from dataclasses import dataclass
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Member:
    recipient_id: int
    handle: str
    address: str
    username: str | None = None
    ens_subname: str | None = None
    eoa_wallet: str | None = None

    @property
    def display_name(self) -> str:
        return self.handle or self.username or self.address

    @classmethod
    def from_dict(cls, data: dict) -> "Member":
        return cls(
            recipient_id=int(data["telegramUserId"]),
            handle=data.get("telegramHandle") or "",
            address=data["circlesAddress"],
            username=data.get("circlesUsername") or None,
            ens_subname=data.get("ensSubname") or None,
            eoa_wallet=data.get("eoaWallet") or None,
        )


class MemberDirectory:
    def __init__(self, members: Iterable[Member] = ()):
        self._by_address: dict[str, Member] = {}
        for m in members:
            self._by_address[m.address.lower()] = m

    @classmethod
    def from_file(cls, path: str) -> "MemberDirectory":
        """Missing or unreadable file -> empty directory (notifications fall back to the group chat)."""
        if not path or not os.path.exists(path):
            logger.warning("Members file %s not found; member lookups will return nothing", path)
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not load members file %s: %s", path, e)
            return cls()

        members = []
        for row in raw if isinstance(raw, list) else []:
            try:
                members.append(Member.from_dict(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed member row %r: %s", row, e)
        logger.info("Loaded %s member(s) from %s", len(members), path)
        return cls(members)

    def lookup(self, address: str | None) -> Member | None:
        if not address:
            return None
        return self._by_address.get(str(address).lower())

    def recipient_for(self, address: str | None) -> int | None:
        member = self.lookup(address)
        return member.recipient_id if member else None

    def all(self) -> list[Member]:
        return list(self._by_address.values())

    def __len__(self) -> int:
        return len(self._by_address)
