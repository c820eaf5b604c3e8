"""
Bet ledger. Durable record of every bet, keyed by id and by
(player, game tag, seed).

The composite key is the storage layer's uniqueness guarantee: a second
bet with the same player, game and seed is rejected. Nothing else in
the engines assumes seeds are unique.
"""

from casino.errors import BetNotFound, DuplicateBet
from casino.models import Bet


class BetLedger:

    def __init__(self):
        self.bets: dict[int, Bet] = {}
        self.by_key: dict[tuple[str, str, int], int] = {}

    def check_unique(self, player: str, tag: str, seed: int) -> None:
        if (player, tag, seed) in self.by_key:
            raise DuplicateBet(
                f"{player} already has a {tag} bet with seed {seed}")

    def add(self, bet: Bet) -> Bet:
        self.check_unique(*bet.key)
        self.bets[bet.id] = bet
        self.by_key[bet.key] = bet.id
        return bet

    def get(self, bet_id: int) -> Bet:
        bet = self.bets.get(bet_id)
        if bet is None:
            raise BetNotFound(f"bet {bet_id} not found")
        return bet

    def for_player(self, player: str) -> list[Bet]:
        return [b for b in self.bets.values() if b.player == player]
