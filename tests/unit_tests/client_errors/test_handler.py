from __future__ import annotations

import pytest

from relaylog.client_errors import ClientErrorHandler, ClientErrorReport
from relaylog.client_errors.handler import CLIENT_ERROR_MESSAGE, MAIL_SENT
from relaylog.errors import ClientPayloadError
from relaylog.logging import LevelTable, Logger, StreamRoute, StreamRouter
from relaylog.sourcemap import SourceMapCache, SourceMapDocument, StackTraceRemapper

MINIFIED = "Error: boom\n    at f (bundle.min.js:1:234)\n    at <anonymous>"
REMAPPED = "Error: boom\n    app.js:42:7 at f\n    at <anonymous>"


@pytest.fixture
def remapper(source_map) -> StackTraceRemapper:
    cache = SourceMapCache()
    cache.replace("source", SourceMapDocument.from_dict(source_map))
    return StackTraceRemapper(cache)


def report(**kwargs) -> ClientErrorReport:
    values = {"app_name": "Checkout", "stack": MINIFIED, "raw_url": "https://shop.test/cart"}
    values.update(kwargs)
    return ClientErrorReport(**values)


class TestReportFromSources:
    def test_body_wins_over_query_and_params(self) -> None:
        merged = ClientErrorReport.from_sources(
            {"appName": "FromBody", "stack": "s1"},
            {"appName": "FromQuery", "rawUrl": "https://q.test"},
            {"appName": "FromPath"},
        )
        assert merged.app_name == "FromBody"
        assert merged.raw_url == "https://q.test"

    def test_path_param_is_the_fallback(self) -> None:
        merged = ClientErrorReport.from_sources({"stack": "s"}, {}, {"appName": "Admin"})
        assert merged.app_name == "Admin"

    def test_none_values_do_not_shadow(self) -> None:
        merged = ClientErrorReport.from_sources({"stack": "s", "appName": None}, {"appName": "Q"})
        assert merged.app_name == "Q"

    def test_optional_fields_default_to_empty(self) -> None:
        merged = ClientErrorReport.from_sources({"stack": "s"})
        assert (merged.app_name, merged.raw_url) == ("", "")

    @pytest.mark.parametrize("body", [{}, {"stack": ""}, {"stack": "   "}, {"stack": 42}])
    def test_stack_is_required(self, body) -> None:
        with pytest.raises(ClientPayloadError) as exc_info:
            ClientErrorReport.from_sources(body)
        assert exc_info.value.field == "stack"


class TestLocalPath:
    def test_logs_through_request_logger_and_acknowledges(
        self, recording, recording_logger: Logger, remapper: StackTraceRemapper
    ) -> None:
        handler = ClientErrorHandler(recording_logger, remapper, remote_sink_configured=False)
        request_log = recording_logger.bind(reqId="r-1")

        ack = handler.handle(report(request={"method": "POST"}), request_log)

        assert (ack.status_code, ack.body) == (200, MAIL_SENT)
        (record,) = recording.records
        assert record.level == "error"
        assert record.message == CLIENT_ERROR_MESSAGE
        assert record.error.stack == REMAPPED
        assert record.fields["machineName"] == "checkout"
        assert record.fields["rawUrl"] == "https://shop.test/cart"
        assert record.fields["reqId"] == "r-1"
        assert record.fields["req"] == {"method": "POST"}

    def test_falls_back_to_application_logger(
        self, recording, recording_logger: Logger, remapper: StackTraceRemapper
    ) -> None:
        handler = ClientErrorHandler(recording_logger, remapper, remote_sink_configured=False)
        handler.handle(report())
        assert recording.records[0].level == "error"

    def test_without_source_map_stack_is_verbatim(self, recording, recording_logger: Logger) -> None:
        handler = ClientErrorHandler(recording_logger, StackTraceRemapper(), remote_sink_configured=False)
        handler.handle(report())
        assert recording.records[0].error.stack == MINIFIED


class TestRemotePath:
    def test_uses_client_error_level(
        self, recording, recording_logger: Logger, remapper: StackTraceRemapper
    ) -> None:
        handler = ClientErrorHandler(recording_logger, remapper, remote_sink_configured=True)
        ack = handler.handle(report())

        assert (ack.status_code, ack.body) == (200, True)
        (record,) = recording.records
        assert record.level == "clienterror"
        assert record.fields["type"] == "client-error"
        assert record.fields["machineName"] == "checkout"
        assert record.error.stack == REMAPPED
        assert "req" not in record.fields

    def test_falls_back_to_error_without_custom_level(self, recording, remapper: StackTraceRemapper) -> None:
        logger = Logger(StreamRouter([StreamRoute(recording, "info", "r")], LevelTable()))
        handler = ClientErrorHandler(logger, remapper, remote_sink_configured=True)
        handler.handle(report())
        assert recording.records[0].level == "error"
