"""Case-insensitive mailbox address collection."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from functools import lru_cache


@lru_cache(maxsize=4096)
def _upper_char(char: str) -> str:
    upper = char.upper()
    # Multi-character expansions (ß -> SS) are not case variants of one character.
    return upper if len(upper) == 1 else char


def fold_case(text: str) -> str:
    """Uppercase *text* one character at a time, independent of locale.

    Unlike :meth:`str.casefold` this never changes the length of the string,
    so ``straße`` and ``strasse`` stay distinct.
    """
    return "".join(_upper_char(char) for char in text)


@dataclass(frozen=True, eq=False)
class Address:
    """A display name plus address, compared without regard to letter case."""

    display_name: str
    address: str

    @property
    def key(self) -> tuple[str, str]:
        return (fold_case(self.display_name), fold_case(self.address))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Address):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


class AddressSet:
    """Set of :class:`Address` deduplicated case-insensitively.

    The first spelling seen for a given address is the one kept.
    There is no removal operation.
    """

    def __init__(self, addresses: Iterable[Address] = ()) -> None:
        self._members: dict[tuple[str, str], Address] = {}
        for address in addresses:
            self.add(address)

    def add(self, address: Address) -> bool:
        """Insert *address* unless an equal member exists.  Returns whether it was added."""
        if address.key in self._members:
            return False
        self._members[address.key] = address
        return True

    def merge(self, other: Iterable[Address]) -> int:
        """Add every member of *other*; returns the number of new members."""
        return sum(1 for address in other if self.add(address))

    def to_ordered_list(self) -> Iterator[Address]:
        """Yield members sorted by address, then display name, ignoring case."""
        for key in sorted(self._members, key=lambda k: (k[1], k[0])):
            yield self._members[key]

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[Address]:
        return iter(self._members.values())

    def __contains__(self, item: object) -> bool:
        return isinstance(item, Address) and item.key in self._members

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AddressSet):
            return NotImplemented
        return self._members.keys() == other._members.keys()

    def __repr__(self) -> str:
        return f"AddressSet({len(self)} addresses)"
