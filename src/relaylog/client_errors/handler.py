"""
Client-side error reports: remap the stack and emit a server-side record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from relaylog.errors import ClientPayloadError
from relaylog.logging import Logger
from relaylog.logging.levels import ERROR
from relaylog.sourcemap import DEFAULT_MAP_NAME, StackTraceRemapper

CLIENT_ERROR_LEVEL = "clienterror"
CLIENT_ERROR_MESSAGE = "Client-side error: An issue occurred while processing the request."
MAIL_SENT = "Mail Sent"


@dataclass(frozen=True)
class ClientErrorReport:
    app_name: str
    stack: str
    raw_url: str = ""
    request: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_sources(
        cls,
        body: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        *,
        request: Optional[Mapping[str, Any]] = None,
    ) -> "ClientErrorReport":
        """Merge the three payload sources with precedence body > query > params.

        ``stack`` is required; ``appName`` and ``rawUrl`` default to "".
        """
        merged: dict[str, Any] = {}
        for source in (params, query, body):
            if source:
                merged.update({k: v for k, v in source.items() if v is not None})

        stack = merged.get("stack")
        if not isinstance(stack, str) or not stack.strip():
            raise ClientPayloadError("stack")
        return cls(
            app_name=str(merged.get("appName") or ""),
            stack=stack,
            raw_url=str(merged.get("rawUrl") or ""),
            request=dict(request or {}),
        )


@dataclass(frozen=True)
class Acknowledgement:
    status_code: int
    body: Union[str, bool]


class ClientErrorHandler:
    """Composes the remapper and the logger for client error reports.

    With a remote sink configured the record goes through the Logger facade
    (tagged ``type="client-error"``) and the caller gets a boolean
    acknowledgement. Without one it is written through the request's own
    logger and the caller gets the plain "Mail Sent" acknowledgement.
    """

    def __init__(
        self,
        logger: Logger,
        remapper: StackTraceRemapper,
        *,
        remote_sink_configured: bool,
        map_name: str = DEFAULT_MAP_NAME,
    ):
        self._logger = logger
        self._remapper = remapper
        self._remote = remote_sink_configured
        self._map_name = map_name

    @property
    def remote_sink_configured(self) -> bool:
        return self._remote

    def handle(self, report: ClientErrorReport, request_logger: Optional[Logger] = None) -> Acknowledgement:
        remapped = self._remapper.remap(report.stack, self._map_name)
        fields: dict[str, Any] = {
            "err": {"stack": remapped},
            "machineName": report.app_name.lower(),
            "rawUrl": report.raw_url,
        }

        if self._remote:
            level = CLIENT_ERROR_LEVEL if CLIENT_ERROR_LEVEL in self._logger.levels else ERROR
            self._logger.log(level, CLIENT_ERROR_MESSAGE, type="client-error", **fields)
            return Acknowledgement(status_code=200, body=True)

        log = request_logger or self._logger
        log.error(CLIENT_ERROR_MESSAGE, req=dict(report.request), **fields)
        return Acknowledgement(status_code=200, body=MAIL_SENT)
