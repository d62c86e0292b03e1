"""Containers for groups of repeat variants and the table that owns them."""
from typing import Iterable, Iterator

from drlib.containers.reads import ReadRegistry


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class GroupError(Exception):
    """Raised when the group table would break its ownership rules."""


# Classes --------------------------------------------------------------------------------------------------------------
class ClusterGroup:
    """
    An ordered set of variant tokens believed to share one true direct repeat.

    Args:
        gid: The group identifier.
        tokens: An iterable of member tokens.

    Examples:
        >>> g = ClusterGroup(1, [4, 7])
        >>> len(g)
        2
    """
    __slots__ = ('_members', 'gid')

    def __init__(self, gid: int, tokens: Iterable[int] = ()):
        self.gid = gid
        self._members = list(tokens)

    def __len__(self): return len(self._members)
    def __iter__(self): return iter(self._members)
    def __getitem__(self, item): return self._members[item]
    def __contains__(self, token: int): return token in self._members
    def __repr__(self): return f"ClusterGroup(gid={self.gid}, size={len(self._members)})"

    @property
    def tokens(self) -> list[int]: return list(self._members)

    def append(self, token: int):
        if token in self._members: raise GroupError(f'Token {token} already in group {self.gid}')
        self._members.append(token)

    def remove(self, token: int): self._members.remove(token)

    def replace(self, old: int, new: int):
        """Swaps ``old`` for ``new`` keeping its position."""
        self._members[self._members.index(old)] = new


class GroupTable:
    """
    Arena owning every live :class:`ClusterGroup`, keyed by GID.

    A token belongs to at most one live group. Removing a group retires its GID for good.

    Examples:
        >>> table = GroupTable()
        >>> table.create(1).append(10)
        >>> table.group_of(10)
        1
    """
    __slots__ = ('_groups', '_owner', '_retired')

    def __init__(self):
        self._groups: dict[int, ClusterGroup] = {}
        self._owner: dict[int, int] = {}
        self._retired: set[int] = set()

    def __len__(self): return len(self._groups)
    def __contains__(self, gid: int): return gid in self._groups
    def __iter__(self) -> Iterator[int]: return iter(self._groups)
    def __getitem__(self, gid: int) -> ClusterGroup: return self._groups[gid]
    def __repr__(self): return f"<GroupTable: {len(self)} groups>"

    def create(self, gid: int) -> ClusterGroup:
        if gid in self._groups or gid in self._retired: raise GroupError(f'GID {gid} has already been used')
        group = self._groups[gid] = _OwnedGroup(gid, self)
        return group

    def remove(self, gid: int) -> ClusterGroup:
        """Retires a group, releasing ownership of its tokens."""
        group = self._groups.pop(gid)
        self._retired.add(gid)
        for token in group:
            if self._owner.get(token) == gid: del self._owner[token]
        return group

    def group_of(self, token: int) -> int:
        """Returns the GID of the live group holding ``token``."""
        return self._owner[token]

    def is_retired(self, gid: int) -> bool: return gid in self._retired

    def as_dict(self) -> dict[int, list[int]]:
        return {gid: group.tokens for gid, group in self._groups.items()}

    def num_reads(self, gid: int, registry: ReadRegistry) -> int:
        """Counts the reads filed under every member of a group."""
        return registry.num_reads(self._groups[gid])

    def _claim(self, token: int, gid: int):
        if (owner := self._owner.get(token)) is not None and owner != gid:
            raise GroupError(f'Token {token} already belongs to live group {owner}')
        self._owner[token] = gid

    def _release(self, token: int):
        self._owner.pop(token, None)


class _OwnedGroup(ClusterGroup):
    """A group that keeps its table's token ownership index in sync."""
    __slots__ = ('_table',)

    def __init__(self, gid: int, table: GroupTable):
        super().__init__(gid)
        self._table = table

    def append(self, token: int):
        self._table._claim(token, self.gid)
        super().append(token)

    def remove(self, token: int):
        super().remove(token)
        self._table._release(token)

    def replace(self, old: int, new: int):
        self._table._claim(new, self.gid)
        super().replace(old, new)
        self._table._release(old)
