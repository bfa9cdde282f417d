from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import ValidationError


# Raised by normalizers on a body with the right shape but unusable values.
PARSE_ERRORS = (ValueError, TypeError, AttributeError, ValidationError)


class AdapterError(Exception):
    """A single upstream fetch failed.

    ``reason`` is a short machine-readable tag (timeout, network, http_status,
    bad_body, upstream_error, not_found, missing_credentials, bad_key).
    ``status`` is the upstream HTTP status when there was one.
    """

    def __init__(self, source: str, reason: str, status: Optional[int] = None, detail: str = "") -> None:
        self.source = source
        self.reason = reason
        self.status = status
        self.detail = detail
        msg = f"{source}: {reason}"
        if status is not None:
            msg += f" (status={status})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class LookupSource(ABC):
    """One external system answering lookups for one domain.

    Implementations do a single attempt and never touch the cache.
    """

    domain: str
    source_name: str

    @abstractmethod
    def fetch(self, key: str) -> Dict[str, Any]:
        raise NotImplementedError

    def fail(self, reason: str, status: Optional[int] = None, detail: str = "") -> AdapterError:
        return AdapterError(self.source_name, reason, status=status, detail=detail)

