"""Sequential cursor over the blocks of a split vector."""

from __future__ import annotations

from typing import Any, Sequence


class BlockCursor:
    """
    Hands out the blocks of a split vector one at a time.

    Used while assembling augmented problems, where several loops walk the
    same split vector in lockstep. Taking past the end, or finishing with
    blocks left over, means the offsets and the assembly disagree.
    """

    def __init__(self, blocks: Sequence[Any], name: str = "") -> None:
        self._blocks = list(blocks)
        self._pos = 0
        self.name = name

    def take(self) -> Any:
        if self._pos >= len(self._blocks):
            raise RuntimeError(
                f"Cursor '{self.name}' over-consumed: all {len(self._blocks)} blocks already taken"
            )
        block = self._blocks[self._pos]
        self._pos += 1
        return block

    def rewind(self) -> None:
        self._pos = 0

    @property
    def position(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return len(self._blocks) - self.position

    def assert_consumed(self) -> None:
        if self.remaining != 0:
            raise RuntimeError(
                f"Cursor '{self.name}' not fully consumed: stopped at block {self.position}, "
                f"{self.remaining} of {len(self._blocks)} blocks left"
            )

    def __len__(self) -> int:
        return len(self._blocks)
