from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Raised when a repo query is built without a firm to scope it to.
    message: str


def require_firm_id(firm_id: str | None) -> None:
    # There is no unscoped query path; an empty firm id is always refused.
    if not firm_id:
        raise TenantPredicateError("Tenant predicate required but firm_id is missing")


def tenant_predicate(model, firm_id: str) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    require_firm_id(firm_id)
    return model.firm_id == firm_id
