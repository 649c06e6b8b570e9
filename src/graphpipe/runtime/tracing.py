"""
Tracing extension - per-request timing in the Apollo tracing v1 format.

Output (under ``extensions.tracing``):
{
    "version": 1,
    "startTime": "2024-01-01T00:00:00.000000Z",
    "endTime": "...",
    "duration": 1234567,
    "parsing": {"startOffset": 1200, "duration": 5400},
    "validation": {"startOffset": 7000, "duration": 9800},
    "execution": {"resolvers": [{"path": [...], "parentType": "Query", ...}]}
}

All durations and offsets are nanoseconds.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional

from graphql import GraphQLResolveInfo

from .extensions import EndHandler, GraphQLExtension, ResolveEndHandler


def _iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class TracingExtension(GraphQLExtension):
    """Records request, parsing, validation and per-resolver timings."""

    def __init__(self):
        self.start_wall_time: Optional[datetime] = None
        self.end_wall_time: Optional[datetime] = None
        self._start: Optional[int] = None
        self._duration: Optional[int] = None
        self.parsing: dict[str, int] = {}
        self.validation: dict[str, int] = {}
        self.resolver_calls: list[dict[str, Any]] = []

    def _offset(self) -> int:
        return time.perf_counter_ns() - self._start

    def request_did_start(self, **_kwargs: Any) -> EndHandler:
        self.start_wall_time = datetime.now(timezone.utc)
        self._start = time.perf_counter_ns()

        def did_end(*_errors: BaseException) -> None:
            self._duration = self._offset()
            self.end_wall_time = datetime.now(timezone.utc)

        return did_end

    def _phase(self, target: dict[str, int]) -> Optional[EndHandler]:
        if self._start is None:
            return None
        target["startOffset"] = self._offset()

        def did_end(*_errors: BaseException) -> None:
            target["duration"] = self._offset() - target["startOffset"]

        return did_end

    def parsing_did_start(self, **_kwargs: Any) -> Optional[EndHandler]:
        return self._phase(self.parsing)

    def validation_did_start(self, **_kwargs: Any) -> Optional[EndHandler]:
        return self._phase(self.validation)

    def will_resolve_field(
        self,
        source: Any,
        args: dict[str, Any],
        context: Any,
        info: GraphQLResolveInfo,
    ) -> Optional[ResolveEndHandler]:
        if self._start is None:
            return None

        call = {
            "path": list(info.path.as_list()),
            "parentType": info.parent_type.name,
            "fieldName": info.field_name,
            "returnType": str(info.return_type),
            "startOffset": self._offset(),
        }
        self.resolver_calls.append(call)

        def did_resolve(_error: Optional[BaseException], _result: Any) -> None:
            call["duration"] = self._offset() - call["startOffset"]

        return did_resolve

    def format(self) -> Optional[tuple[str, Any]]:
        if self.start_wall_time is None:
            return None

        # format() runs before the request ends; report elapsed time so far
        duration = self._duration if self._duration is not None else self._offset()
        end_wall_time = self.end_wall_time or datetime.now(timezone.utc)

        return "tracing", {
            "version": 1,
            "startTime": _iso(self.start_wall_time),
            "endTime": _iso(end_wall_time),
            "duration": duration,
            "parsing": dict(self.parsing),
            "validation": dict(self.validation),
            "execution": {"resolvers": [dict(call) for call in self.resolver_calls]},
        }
