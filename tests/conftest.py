import os
import sys
from types import SimpleNamespace

import pytest

# Ensure repository root is on sys.path so `import ticketscan.*` works during tests
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from fakes import FakeTextRecognizer, TruthCellRecognizer, make_ticket_image  # noqa: E402
from ticketscan.config import ScanSettings  # noqa: E402
from ticketscan.game_catalog import GameCatalog  # noqa: E402
from ticketscan.line_parser import LineParser  # noqa: E402
from ticketscan.orchestrator import ExtractionOrchestrator  # noqa: E402


@pytest.fixture()
def settings():
    return ScanSettings()


@pytest.fixture()
def ticket_image():
    return make_ticket_image()


@pytest.fixture()
def build_orchestrator(settings):
    """Factory for an orchestrator wired with fakes; override any component by keyword."""

    def _build(grid=None, truth=None, cloud=None, segment_error=None, line_observations=None,
               on_scan=None, orchestrator_settings=None):
        active_settings = orchestrator_settings or settings

        def segment(image):
            if segment_error is not None:
                raise segment_error
            return grid

        cell_recognizer = TruthCellRecognizer(truth or {}, on_scan=on_scan)
        orchestrator = ExtractionOrchestrator(
            segmenter=SimpleNamespace(segment=segment),
            cell_recognizer=cell_recognizer,
            line_parser=LineParser(FakeTextRecognizer(line_observations), active_settings),
            catalog=GameCatalog(priority=active_settings.game_priority,
                                default_game_id=active_settings.default_game_id),
            cloud=cloud,
            settings=active_settings,
        )
        return orchestrator, cell_recognizer

    return _build


@pytest.fixture()
def fastapi_app():
    import ticketscan.api as api

    yield api.app
    api.app.dependency_overrides.clear()
