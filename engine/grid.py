from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .types import Card, GridPos


@dataclass
class GridCell:
    card: Card
    revealed: bool = False
    cleared: bool = False

    def score(self) -> int:
        return 0 if self.cleared else self.card.value


class Grid:
    def __init__(self, cards: Sequence[Card]) -> None:
        # Hidden cells still own their card; "revealed" is only a visibility flag
        assert len(cards) == 9, "A grid holds exactly 9 cards"
        self.cells: List[GridCell] = [GridCell(card) for card in cards]

    def __getitem__(self, pos: GridPos) -> GridCell:
        return self.cells[pos]

    def __len__(self) -> int:
        return len(self.cells)

    def cards(self) -> List[Card]:
        return [cell.card for cell in self.cells]

    def count_hidden(self) -> int:
        return sum(1 for cell in self.cells if not cell.revealed)

    def count_revealed(self) -> int:
        return sum(1 for cell in self.cells if cell.revealed)

    def hidden_positions(self) -> List[GridPos]:
        return [i for i, cell in enumerate(self.cells) if not cell.revealed]

    def all_revealed(self) -> bool:
        return self.count_hidden() == 0

    def reveal(self, pos: GridPos) -> Card:
        cell = self.cells[pos]
        cell.revealed = True
        return cell.card

    def reveal_all(self) -> None:
        for cell in self.cells:
            if not cell.cleared:
                cell.revealed = True

    def replace(self, pos: GridPos, card: Card) -> Card:
        cell = self.cells[pos]
        old = cell.card
        cell.card = card
        cell.revealed = True
        return old

    def score(self) -> int:
        return sum(cell.score() for cell in self.cells)

    @staticmethod
    def column_of(pos: GridPos) -> int:
        return pos % 3

    @staticmethod
    def column(col: int) -> List[GridPos]:
        return [col, col + 3, col + 6]

    def three_of_a_kind(self, col: int) -> bool:
        cells = [self.cells[p] for p in Grid.column(col)]
        if any(not cell.revealed or cell.cleared for cell in cells):
            return False
        return len({cell.card.rank for cell in cells}) == 1

    def clear_column(self, col: int) -> None:
        for p in Grid.column(col):
            self.cells[p].cleared = True

    def resolve_column(self, pos: GridPos) -> Optional[int]:
        """Clear the column through ``pos`` if it now holds three of a kind."""
        col = Grid.column_of(pos)
        if not self.three_of_a_kind(col):
            return None
        self.clear_column(col)
        return col
