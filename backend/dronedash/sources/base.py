"""Common result type for telemetry sources.

Every source implements ``fetch() -> FetchResult`` and never raises: transport
problems are reported through `FetchResult.error` so the polling loop always
has a total function to call.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from dronedash.schemas import Telemetry, TelemetryFragment


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch: fragments, a pre-fused snapshot, an error, or nothing."""
    fragments: List[TelemetryFragment] = field(default_factory=list)
    telemetry: Optional[Telemetry] = None
    error: Optional[str] = None

    @classmethod
    def empty(cls) -> "FetchResult":
        return cls()

    @classmethod
    def failed(cls, message: str) -> "FetchResult":
        return cls(error=message or "Unknown error")

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def is_empty(self) -> bool:
        return not self.is_error and not self.fragments and self.telemetry is None

    @property
    def kinds(self) -> List[str]:
        return [f.kind for f in self.fragments]
