from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from engine import (
    GameConfig,
    GameError,
    GameState,
    Grid,
    PlayerKind,
    SUIT_MAP,
    is_game_over,
    new_game,
    resolve,
    standings,
    start_next_round,
    step,
    winners,
)


PLAYERS: List[Tuple[PlayerKind, str]] = [
    ("H", "You"),
    ("AI", "Bot A"),
    ("AI", "Bot B"),
]

ROUNDS: int = 9
SEED: Optional[int] = None


def print_legend() -> None:
    items = ", ".join(f"{k}={v}" for k, v in SUIT_MAP.items())
    print(f"Suits: {items}. Values: A=1, 5=-5, J/Q=10, K=0, others face value.")


def print_grid(g: Grid, title: str = "") -> None:
    if title:
        print(f"--- {title} ---")
    for r in range(3):
        row_parts: List[str] = []
        for c in range(3):
            cell = g[r * 3 + c]
            if cell.cleared:
                row_parts.append("..")
            elif cell.revealed:
                row_parts.append(str(cell.card))
            else:
                row_parts.append(f"[{r * 3 + c}]")
        print(" ".join(f"{x:>4}" for x in row_parts))
    print()


def drain_logs(state: GameState, seen: int) -> int:
    for line in state.logs[seen:]:
        print(line)
    return len(state.logs)


def ask_pos(options: List[int]) -> int:
    while True:
        s = input(f"Cell {options}: ").strip()
        try:
            pos = int(s)
        except ValueError:
            print("Invalid number.")
            continue
        if pos in options:
            return pos
        print("Pick one of the listed cells.")


def ask_yes_no(prompt: str) -> bool:
    while True:
        s = input(f"{prompt} (y/n): ").strip().lower()
        if s in ("y", "n"):
            return s == "y"


def answer(state: GameState, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    p = state.players[state.current_idx]
    if kind == "peek":
        print(f"Peek {payload['remaining']} more card(s).")
        return {"pos": ask_pos(payload["hidden"])}
    if kind == "choose_source":
        print_grid(p.grid, f"{p.name}'s grid")
        top = state.discard[-1] if state.discard else None
        print(f"Discard top: {top if top else '(empty)'}")
        if payload["allowed"] == ["pile"]:
            print("Drawing from the pile.")
            return {"source": "pile"}
        take = ask_yes_no("Take the discard?")
        return {"source": "discard" if take else "pile"}
    # choose_pos
    print(f"Holding {state.drawn} (from {payload['from']}).")
    if not payload["open"]:
        return {"pos": None, "keep": False}
    pos = ask_pos(payload["open"])
    keep = True if payload["from"] == "discard" else ask_yes_no("Keep the card there?")
    return {"pos": pos, "keep": keep}


def play_round(state: GameState) -> None:
    print(f"\n=== Round {state.round_no} ===")
    seen = 0
    while True:
        step(state)
        seen = drain_logs(state, seen)
        if not state.pending:
            break
        pa = state.pending[0]
        response = answer(state, pa.kind, pa.payload)
        try:
            resolve(state, pa.id, response)
        except GameError as e:
            print(f"Not allowed: {e.message}")
    for p in state.players:
        print_grid(p.grid, f"{p.name}: {p.round_score} (total {p.total_score})")


def main() -> None:
    print("Golf 9 - terminal game against the AI")
    print_legend()
    cfg = GameConfig(players=PLAYERS, rounds=ROUNDS, seed=SEED)
    state = new_game(cfg)
    while True:
        play_round(state)
        if is_game_over(state):
            break
        start_next_round(state)
    print("\n=== Game Over ===")
    names = {p.id: p.name for p in state.players}
    for pid, total in standings(state):
        print(f"{names[pid]}: {total} pts")
    won = [names[pid] for pid in winners(state)]
    if len(won) == 1:
        print(f"Winner: {won[0]}")
    else:
        print("Winners (tie): " + ", ".join(won))


if __name__ == "__main__":
    main()
