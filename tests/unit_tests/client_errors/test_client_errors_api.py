from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from relaylog.app import create_app
from relaylog.config import HttpConfig, LoggingSettings, Settings, SourceMapSettings
from relaylog.logging import Logger

MINIFIED = "Error: boom\n    at f (bundle.min.js:1:234)\n    at <anonymous>"


def make_client(settings: Settings, logger: Logger) -> TestClient:
    return TestClient(create_app(settings, logger_factory=lambda _: logger))


@pytest.fixture
def local_client(recording_logger: Logger, source_map_dir: Path) -> Iterator[TestClient]:
    settings = Settings(source_map=SourceMapSettings(directory=str(source_map_dir)))
    with make_client(settings, recording_logger) as client:
        yield client


@pytest.fixture
def remote_client(recording_logger: Logger, source_map_dir: Path) -> Iterator[TestClient]:
    settings = Settings(
        logging=LoggingSettings(http_config=HttpConfig(url="http://collector.test/logs")),
        source_map=SourceMapSettings(directory=str(source_map_dir)),
    )
    with make_client(settings, recording_logger) as client:
        yield client


class TestClientErrorsApi:
    def test_json_body_is_remapped_and_acknowledged(self, local_client: TestClient, recording) -> None:
        response = local_client.post(
            "/client-errors",
            json={"appName": "Checkout", "stack": MINIFIED, "rawUrl": "https://shop.test/cart"},
            headers={"x-request-id": "req-42", "user-agent": "pytest-browser"},
        )

        assert response.status_code == 200
        assert response.text == "Mail Sent"
        (record,) = recording.records
        assert record.error.stack == "Error: boom\n    app.js:42:7 at f\n    at <anonymous>"
        assert record.fields["machineName"] == "checkout"
        assert record.fields["reqId"] == "req-42"
        assert record.fields["req"]["method"] == "POST"
        assert record.fields["req"]["userAgent"] == "pytest-browser"

    def test_path_app_name_and_query(self, local_client: TestClient, recording) -> None:
        response = local_client.get("/client-errors/Admin", params={"stack": MINIFIED, "rawUrl": "https://a.test"})
        assert response.status_code == 200
        assert recording.records[0].fields["machineName"] == "admin"
        assert recording.records[0].fields["rawUrl"] == "https://a.test"

    def test_body_wins_over_query_and_path(self, local_client: TestClient, recording) -> None:
        local_client.post("/client-errors/Path?appName=Query", json={"appName": "Body", "stack": MINIFIED})
        assert recording.records[0].fields["machineName"] == "body"

    def test_form_body(self, local_client: TestClient, recording) -> None:
        response = local_client.post("/client-errors", data={"appName": "Form", "stack": MINIFIED})
        assert response.status_code == 200
        assert recording.records[0].fields["machineName"] == "form"

    def test_missing_stack_is_bad_request(self, local_client: TestClient, recording) -> None:
        response = local_client.post("/client-errors", json={"appName": "Checkout"})
        assert response.status_code == 400
        assert recording.records == []

    def test_malformed_json_is_bad_request(self, local_client: TestClient) -> None:
        response = local_client.post(
            "/client-errors", content=b"{nope", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400

    def test_remote_sink_acknowledges_with_boolean(self, remote_client: TestClient, recording) -> None:
        response = remote_client.post("/client-errors", json={"appName": "Checkout", "stack": MINIFIED})

        assert response.status_code == 200
        assert response.json() is True
        assert recording.records[0].level == "clienterror"
        assert recording.records[0].fields["type"] == "client-error"

    def test_health(self, local_client: TestClient) -> None:
        assert local_client.get("/health").json() == {"status": "ok"}

    def test_app_state_is_wired(self, local_client: TestClient, recording_logger: Logger) -> None:
        state = local_client.app.state
        assert state.logger is recording_logger
        assert "source" in state.remapper.cache

    def test_logger_closed_on_shutdown(self, recording_logger: Logger, recording) -> None:
        with make_client(Settings(), recording_logger):
            pass
        assert recording.closed == 1
