import pytest

from ticketscan.config import DEFAULT_GAME_PRIORITY, ScanSettings
from ticketscan.errors import ConfigurationError
from ticketscan.game_catalog import GAME_CONSTRAINTS, GameCatalog, create_game_catalog, row_label
from ticketscan.models import EMPTY, UNREADABLE, TicketRow


@pytest.fixture()
def catalog():
    return GameCatalog()


class TestInferGame:
    def test_powerball_bounds_win_over_looser_later_games(self, catalog):
        assert catalog.infer_game([69], [26]) == "us_powerball"

    def test_small_values_pick_highest_priority_game(self, catalog):
        assert catalog.infer_game([10, 20, 30], [5]) == "us_mega_millions"

    def test_priority_order_decides_between_overlapping_games(self):
        # uk_lotto (59, 0) and german_lotto (49, 0) both contain these maxima
        assert GameCatalog(priority=["uk_lotto", "german_lotto"]).infer_game([45], []) == "uk_lotto"
        assert GameCatalog(priority=["german_lotto", "uk_lotto"]).infer_game([45], []) == "german_lotto"

    def test_sentinels_are_ignored(self, catalog):
        assert catalog.infer_game([UNREADABLE, EMPTY, 12], [UNREADABLE]) == "us_mega_millions"

    def test_large_regulars_without_special(self, catalog):
        assert catalog.infer_game([85, 3], [0]) == "italian_superenalotto"

    def test_nothing_fits_returns_default(self, catalog):
        assert catalog.infer_game([95], [30]) == "us_mega_millions"

    def test_infer_from_rows(self, catalog):
        rows = [TicketRow((1, 2, 3, 4, 69), 26), TicketRow((5, 6, 7, 8, 9), 1)]
        assert catalog.infer_game_from_rows(rows) == "us_powerball"


class TestCatalogSetup:
    def test_builtin_table(self):
        assert len(GAME_CONSTRAINTS) == 20
        assert set(DEFAULT_GAME_PRIORITY) == set(GAME_CONSTRAINTS)
        mega = GAME_CONSTRAINTS["us_mega_millions"]
        assert (mega.max_regular, mega.max_special) == (70, 25)

    def test_unknown_game_falls_back_to_default_bounds(self, catalog):
        assert catalog.constraint_for("atlantis_lotto").game_id == "us_mega_millions"
        assert catalog.constraint_for(None).game_id == "us_mega_millions"

    def test_unknown_priority_entries_are_dropped(self):
        catalog = GameCatalog(priority=["atlantis_lotto", "uk_lotto"])
        assert catalog.priority == ["uk_lotto"]

    def test_unknown_default_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            GameCatalog(default_game_id="atlantis_lotto")

    def test_games_lists_priority_first(self):
        catalog = GameCatalog(priority=["japan_lotto"])
        games = catalog.games()
        assert games[0].game_id == "japan_lotto"
        assert len(games) == 20

    def test_factory_uses_settings(self):
        catalog = create_game_catalog(ScanSettings(default_game_id="uk_lotto", game_priority=["uk_lotto"]))
        assert catalog.default_game_id == "uk_lotto"
        assert catalog.priority == ["uk_lotto"]


class TestValidation:
    def test_valid_row_has_no_issues(self, catalog):
        assert catalog.validate_row(TicketRow((5, 12, 33, 61, 69), 20), GAME_CONSTRAINTS["us_powerball"]) == []

    def test_sentinels_need_manual_correction(self, catalog):
        issues = catalog.validate_row(TicketRow((5, UNREADABLE, 33, 61, EMPTY), UNREADABLE),
                                      GAME_CONSTRAINTS["us_powerball"])

        assert "Regular number 2 is unreadable and needs manual correction" in issues
        assert "Regular number 5 is missing and needs manual correction" in issues
        assert "Special number is unreadable and needs manual correction" in issues

    def test_range_and_duplicate_checks(self, catalog):
        issues = catalog.validate_row(TicketRow((5, 5, 33, 61, 75), 30), GAME_CONSTRAINTS["us_powerball"])

        assert "Regular numbers cannot have duplicates" in issues
        assert "Regular number 5 (75) must be between 1-69" in issues
        assert "Special number (30) must be between 1-26" in issues

    def test_special_ignored_for_games_without_one(self, catalog):
        assert catalog.validate_row(TicketRow((1, 2, 3, 4, 5), 0), GAME_CONSTRAINTS["uk_lotto"]) == []

    def test_validate_rows_summary(self, catalog):
        rows = [TicketRow((5, 12, 33, 61, 69), 20), TicketRow((1, UNREADABLE, 3, 4, 5), 6)]

        summary = catalog.validate_rows(rows, GAME_CONSTRAINTS["us_powerball"])

        assert summary["total_rows"] == 2
        assert summary["valid_rows"] == 1
        assert summary["rows_needing_review"] == 1
        assert list(summary["issues"]) == ["B"]


def test_row_labels():
    assert [row_label(i) for i in (0, 1, 25, 26, 27)] == ["A", "B", "Z", "AA", "AB"]
