"""
Lottery Game Catalog
====================

Static table of supported games and their number ranges, plus a best-guess
inference of which game a ticket belongs to.

Inference is a bound-containment heuristic and is not injective: several
games accept the same observed maxima, so the first match in the priority
list wins. The priority order is configuration, not a correctness claim.
"""

from typing import Dict, Iterable, List, Optional

from loguru import logger

from ticketscan.config import DEFAULT_GAME_PRIORITY, ScanSettings
from ticketscan.errors import ConfigurationError
from ticketscan.models import EMPTY, REGULAR_COUNT, UNREADABLE, GameConstraint, TicketRow

DEFAULT_GAME_ID = "us_mega_millions"

GAME_CONSTRAINTS: Dict[str, GameConstraint] = {
    game.game_id: game
    for game in [
        # USA
        GameConstraint("us_mega_millions", 70, 25),
        GameConstraint("us_powerball", 69, 26),
        GameConstraint("us_lotto_america", 52, 10),
        GameConstraint("us_cash4life", 60, 4),
        # Europe
        GameConstraint("euromillions", 50, 12),
        GameConstraint("uk_lotto", 59, 0),
        GameConstraint("irish_lotto", 47, 0),
        GameConstraint("spanish_lottery", 49, 0),
        GameConstraint("italian_superenalotto", 90, 0),
        GameConstraint("french_lotto", 49, 10),
        GameConstraint("german_lotto", 49, 0),
        # Australia
        GameConstraint("au_oz_lotto", 45, 0),
        GameConstraint("au_powerball", 35, 20),
        GameConstraint("au_saturday_lotto", 45, 0),
        # Canada
        GameConstraint("ca_lotto_max", 50, 0),
        GameConstraint("ca_lotto_649", 49, 0),
        # Other international
        GameConstraint("brazil_mega_sena", 60, 0),
        GameConstraint("mexico_melate", 56, 0),
        GameConstraint("south_africa_lotto", 52, 0),
        GameConstraint("japan_lotto", 43, 0),
    ]
}


class GameCatalog:
    """Game constraint lookup and inference."""

    def __init__(self, priority: Optional[List[str]] = None,
                 constraints: Optional[Dict[str, GameConstraint]] = None,
                 default_game_id: str = DEFAULT_GAME_ID):
        """
        Args:
            priority: Game ids in the order inference should try them
            constraints: Game table; the built-in table when omitted
            default_game_id: Returned when no game fits, and used for unknown ids
        """
        self.constraints = dict(constraints) if constraints is not None else dict(GAME_CONSTRAINTS)
        self.default_game_id = default_game_id
        if default_game_id not in self.constraints:
            raise ConfigurationError(f"Default game '{default_game_id}' is not in the catalog")

        order = priority if priority is not None else DEFAULT_GAME_PRIORITY
        unknown = [g for g in order if g not in self.constraints]
        if unknown:
            logger.warning(f"Ignoring unknown games in priority list: {unknown}")
        self.priority = [g for g in order if g in self.constraints]

    def constraint_for(self, game_id: Optional[str]) -> GameConstraint:
        """Constraint for ``game_id``; the default game's bounds for unknown ids."""
        if game_id in self.constraints:
            return self.constraints[game_id]
        if game_id is not None:
            logger.warning(f"Unknown game '{game_id}', using {self.default_game_id} bounds")
        return self.constraints[self.default_game_id]

    def games(self) -> List[GameConstraint]:
        """All games, priority order first, then any game not in the priority list."""
        ordered = [self.constraints[g] for g in self.priority]
        ordered.extend(c for g, c in self.constraints.items() if g not in self.priority)
        return ordered

    def infer_game(self, numbers: Iterable[int], specials: Iterable[int]) -> str:
        """
        Guess the game from observed numbers.

        Sentinels and non-positive values are ignored. Returns the first game
        in priority order whose bounds contain both observed maxima.

        Args:
            numbers: Observed regular numbers
            specials: Observed special numbers

        Returns:
            Game id (the default game when nothing fits)
        """
        max_regular = max((n for n in numbers if n > 0), default=0)
        max_special = max((s for s in specials if s > 0), default=0)

        for game_id in self.priority:
            game = self.constraints[game_id]
            if max_regular <= game.max_regular and max_special <= game.max_special:
                logger.debug(f"Inferred {game_id} from maxima ({max_regular}, {max_special})")
                return game_id

        logger.debug(f"No game fits maxima ({max_regular}, {max_special}), "
                     f"defaulting to {self.default_game_id}")
        return self.default_game_id

    def infer_game_from_rows(self, rows: Iterable[TicketRow]) -> str:
        rows = list(rows)
        numbers = [n for row in rows for n in row.numbers]
        specials = [row.special for row in rows]
        return self.infer_game(numbers, specials)

    def validate_row(self, row: TicketRow, constraint: GameConstraint) -> List[str]:
        """
        List problems with a row under a game's rules.

        Sentinel entries are reported as needing manual correction rather
        than as range errors.

        Args:
            row: Row to check
            constraint: Game bounds

        Returns:
            Human-readable issues; empty when the row is valid
        """
        issues = []

        if len(row.numbers) != REGULAR_COUNT:
            issues.append(f"Must have exactly {REGULAR_COUNT} regular numbers")

        for i, n in enumerate(row.numbers):
            if n == UNREADABLE:
                issues.append(f"Regular number {i + 1} is unreadable and needs manual correction")
            elif n == EMPTY:
                issues.append(f"Regular number {i + 1} is missing and needs manual correction")
            elif not 1 <= n <= constraint.max_regular:
                issues.append(f"Regular number {i + 1} ({n}) must be between 1-{constraint.max_regular}")

        filled = [n for n in row.numbers if n > 0]
        if len(set(filled)) != len(filled):
            issues.append("Regular numbers cannot have duplicates")

        if constraint.has_special:
            if row.special == UNREADABLE:
                issues.append("Special number is unreadable and needs manual correction")
            elif row.special == EMPTY:
                issues.append("Special number is missing and needs manual correction")
            elif not 1 <= row.special <= constraint.max_special:
                issues.append(f"Special number ({row.special}) must be between 1-{constraint.max_special}")

        return issues

    def validate_rows(self, rows: List[TicketRow], constraint: GameConstraint) -> Dict:
        """
        Validate every row of a ticket.

        Returns:
            Dictionary with valid_rows, rows_needing_review and issues keyed by row label
        """
        issues = {}
        valid = 0
        for index, row in enumerate(rows):
            row_issues = self.validate_row(row, constraint)
            if row_issues:
                issues[row_label(index)] = row_issues
            else:
                valid += 1

        return {
            "game_id": constraint.game_id,
            "total_rows": len(rows),
            "valid_rows": valid,
            "rows_needing_review": len(issues),
            "issues": issues,
        }


def row_label(index: int) -> str:
    """Ticket row label: A, B, ... Z, then AA, AB, ..."""
    label = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        label = chr(65 + remainder) + label
    return label


def create_game_catalog(settings: Optional[ScanSettings] = None) -> GameCatalog:
    """
    Create a catalog using the configured priority list and default game.

    Returns:
        GameCatalog instance
    """
    settings = settings or ScanSettings()
    return GameCatalog(priority=settings.game_priority, default_game_id=settings.default_game_id)
