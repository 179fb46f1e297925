from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from fakes import build_grid, make_ticket_image, png_bytes
from ticketscan.api import get_orchestrator
from ticketscan.errors import NetworkError, SegmentationError
from ticketscan.models import TicketRow


@pytest.fixture()
def client_for(fastapi_app):
    """TestClient whose orchestrator dependency is replaced by the given one."""

    def _client(orchestrator):
        fastapi_app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        return TestClient(fastapi_app)

    return _client


def _upload(content_type="image/png", data=None):
    return {"file": ("ticket.png", png_bytes(make_ticket_image()) if data is None else data, content_type)}


class TestInfoEndpoints:
    def test_health(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).get("/api/v1/ticket/health")

        assert r.status_code == 200
        assert r.json() == {"status": "healthy", "cloud_configured": False}

    def test_games_in_priority_order(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).get("/api/v1/ticket/games")

        data = r.json()
        assert r.status_code == 200
        assert data["default_game_id"] == "us_mega_millions"
        assert data["games"][0] == {"game_id": "us_mega_millions", "max_regular": 70,
                                    "max_special": 25, "has_special": True}
        assert len(data["games"]) == 20


class TestParseEndpoint:
    def test_parse_round_trip(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/parse",
                                          json={"canonical": "Lottery: 5 12 33 61 69 26|1 -1 3 4 5 6 Ticket:OCR"})

        data = r.json()
        assert r.status_code == 200
        assert data["rows"] == [
            {"numbers": [5, 12, 33, 61, 69], "special": 26},
            {"numbers": [1, -1, 3, 4, 5], "special": 6},
        ]
        assert data["source_tag"] == "OCR"
        assert data["game_id"] == "us_powerball"
        assert data["validation"]["rows_needing_review"] == 1

    def test_parse_rejects_malformed_string(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/parse", json={"canonical": "not a ticket"})

        assert r.status_code == 422


class TestScanEndpoint:
    def test_rejects_non_image(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload("text/plain", b"hello"))

        assert r.status_code == 400
        assert "must be an image" in r.json()["detail"]

    def test_rejects_empty_file(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload(data=b""))

        assert r.status_code == 400

    def test_rejects_undecodable_image(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload(data=b"definitely not a png"))

        assert r.status_code == 400

    def test_rejects_partial_crop_region(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload(), data={"crop_x": "0.1"})

        assert r.status_code == 400

    def test_rejects_unknown_game(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload(), data={"game_id": "atlantis"})

        assert r.status_code == 400

    def test_local_scan_success(self, client_for, build_orchestrator):
        grid, truth = build_grid([[5, 12, 33, 61, 69, 20], [1, 2, 3, 4, 5, 6]])
        orchestrator, _ = build_orchestrator(grid=grid, truth=truth)

        r = client_for(orchestrator).post(
            "/api/v1/ticket/scan",
            files=_upload(),
            data={"crop_x": "0", "crop_y": "0", "crop_width": "1", "crop_height": "1", "strategy": "padded"},
        )

        data = r.json()
        assert r.status_code == 200
        assert data["success"] is True
        assert data["tier"] == "local_grid"
        assert data["game_id"] == "us_mega_millions"
        assert data["canonical"] == "Lottery: 5 12 33 61 69 20|1 2 3 4 5 6 Ticket:OCR"
        assert data["validation"]["valid_rows"] == 2

    def test_cloud_fallback_success(self, client_for, build_orchestrator):
        cloud = MagicMock()
        cloud.extract.return_value = [TicketRow((7, 14, 21, 28, 35), 3)]
        orchestrator, _ = build_orchestrator(cloud=cloud, segment_error=SegmentationError("no grid"))

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload())

        assert r.status_code == 200
        assert r.json()["tier"] == "cloud_no_hint"

    def test_exhaustion_without_cloud_is_422_with_partial_rows(self, client_for, build_orchestrator):
        grid, truth = build_grid([[5, 90, 91, 92, 93, 94]])
        orchestrator, _ = build_orchestrator(grid=grid, truth=truth)

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload())

        assert r.status_code == 422
        assert r.json()["detail"]["partial_rows"] == [{"numbers": [5, -1, -1, -1, -1], "special": -1}]

    def test_network_exhaustion_is_503(self, client_for, build_orchestrator):
        cloud = MagicMock()
        cloud.extract.side_effect = NetworkError("offline")
        orchestrator, _ = build_orchestrator(cloud=cloud, segment_error=SegmentationError("no grid"))

        r = client_for(orchestrator).post("/api/v1/ticket/scan", files=_upload())

        assert r.status_code == 503


class TestScanWithRowCount:
    def test_requires_cloud(self, client_for, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        r = client_for(orchestrator).post("/api/v1/ticket/scan-with-row-count", files=_upload())

        assert r.status_code == 503

    def test_uses_detected_row_count(self, client_for, build_orchestrator):
        cloud = MagicMock()
        cloud.detect_row_count.return_value = 1
        cloud.extract.return_value = [TicketRow((7, 14, 21, 28, 35), 3)]
        orchestrator, _ = build_orchestrator(cloud=cloud)

        r = client_for(orchestrator).post("/api/v1/ticket/scan-with-row-count", files=_upload())

        data = r.json()
        assert r.status_code == 200
        assert data["tier"] == "cloud_with_hint"
        assert data["row_count_hint"] == 1
