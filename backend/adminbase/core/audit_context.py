"""
Request-scoped audit context.

One instance lives on each request's ``Database`` handle. It carries the
authenticated actor and the request metadata that every audit entry written
during the request is stamped with, plus the re-entrancy flag that keeps the
audit table from auditing its own inserts.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Optional

AUDIT_LOG_TABLE = "audit_logs"


@dataclass
class AuditContext:
    """Who is acting, from where, and whether writes are currently audited."""

    actor_id: Optional[int] = None
    actor_role: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    query: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    enabled: bool = True
    ignored_resource_types: FrozenSet[str] = frozenset({AUDIT_LOG_TABLE})
    suppressed: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.ignored_resource_types = frozenset(self.ignored_resource_types) | {AUDIT_LOG_TABLE}

    @classmethod
    def from_settings(cls, settings: Any) -> "AuditContext":
        return cls(
            enabled=settings.AUDIT_ENABLED,
            ignored_resource_types=frozenset(settings.AUDIT_IGNORED_TABLES),
        )

    def set_actor(self, actor_id: Optional[int], role: Optional[str] = None) -> None:
        self.actor_id = int(actor_id) if actor_id is not None else None
        self.actor_role = role

    def clear_actor(self) -> None:
        self.actor_id = None
        self.actor_role = None

    def set_request_meta(
        self,
        method: Optional[str] = None,
        path: Optional[str] = None,
        query: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.method = method
        self.path = path
        self.query = query
        self.ip_address = ip_address
        self.user_agent = user_agent

    def ignore(self, resource_types: Iterable[str]) -> None:
        self.ignored_resource_types = self.ignored_resource_types | frozenset(resource_types)

    def should_audit(self, resource_type: str) -> bool:
        return (
            self.enabled
            and not self.suppressed
            and resource_type not in self.ignored_resource_types
        )

    @contextmanager
    def suppress(self) -> Iterator[None]:
        """Disable auditing for the duration of the block, restoring the prior state."""
        previous = self.suppressed
        self.suppressed = True
        try:
            yield
        finally:
            self.suppressed = previous

    def request_metadata(self) -> Dict[str, Any]:
        """Request fields worth attaching to an audit entry; empty ones are dropped."""
        base = {
            "method": self.method,
            "path": self.path,
            "query": self.query,
            "actor_role": self.actor_role,
        }
        return {key: value for key, value in base.items() if value}
