from __future__ import annotations

import pytest

from caseflow.domain.models import Case
from caseflow.persistence.guards import TenantPredicateError, tenant_predicate
from caseflow.persistence.repos import audit as audit_repo
from caseflow.persistence.repos import cases as cases_repo
from caseflow.persistence.repos import employees as employees_repo
from caseflow.persistence.repos import vault_sessions as vault_repo


@pytest.mark.parametrize("firm_id", [None, ""])
def test_tenant_predicate_refuses_missing_firm(firm_id) -> None:
    with pytest.raises(TenantPredicateError):
        tenant_predicate(Case, firm_id)


def test_tenant_predicate_ignores_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    # No setting can turn the guard off.
    monkeypatch.setenv("AUTHZ_REQUIRE_TENANT_PREDICATE", "false")
    with pytest.raises(TenantPredicateError):
        tenant_predicate(Case, "")


@pytest.mark.asyncio
async def test_case_repo_requires_tenant_predicate() -> None:
    with pytest.raises(TenantPredicateError):
        await cases_repo.get_case(None, None, "case")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await cases_repo.list_transitions(None, "", "case")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await cases_repo.count_open_cases_for_assignee(None, None, "emp")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_employee_and_vault_repos_require_tenant_predicate() -> None:
    with pytest.raises(TenantPredicateError):
        await employees_repo.get_employee(None, None, "emp")  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await vault_repo.get_vault_session(  # type: ignore[arg-type]
            None, firm_id=None, case_id="case", vault_session_id="vs"
        )


@pytest.mark.asyncio
async def test_audit_repo_requires_tenant_predicate() -> None:
    with pytest.raises(TenantPredicateError):
        await audit_repo.list_entries(None, firm_id=None)  # type: ignore[arg-type]
    with pytest.raises(TenantPredicateError):
        await audit_repo.count_entries(None, firm_id="")  # type: ignore[arg-type]
