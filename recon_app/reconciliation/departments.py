"""
Department code reconciliation.

Vista has no department extract; contracts and work orders carry a free-text
department code instead. Codes are reconciled as a group: linking a code to a
canonical department stamps every contract and work order carrying it.
Department links are many-to-one, so no exclusivity applies here.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.matching import DEFAULT_PROFILE, MatchingProfile
from recon_app.models import Department, LinkStatus, VistaContract, VistaWorkOrder, db
from recon_app.models.base import utcnow

from .duplicates import round_score
from .errors import NotFoundError, TransactionFailure, ValidationError
from .similarity import similarity

JOB_MODELS = (("contracts", VistaContract), ("work_orders", VistaWorkOrder))


@dataclass
class DepartmentCandidate:
    department_id: int
    department_number: str | None
    name: str
    similarity: float
    exact_match: bool = False


@dataclass
class DepartmentCodeGroup:
    department_code: str
    usage_count: dict[str, int]
    candidates: list[DepartmentCandidate] = field(default_factory=list)

    @property
    def best_score(self) -> float:
        return self.candidates[0].similarity if self.candidates else 0.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["best_score"] = self.best_score
        return payload


class DepartmentReconciler:
    """Match, link and promote Vista department codes."""

    def __init__(self, session: Session | None = None, profile: MatchingProfile | None = None):
        self.session = session or db.session
        self.profile = profile or DEFAULT_PROFILE

    def unlinked_code_usage(self, tenant_id: int) -> dict[str, Counter]:
        """Usage counts of department codes on records with no department link."""

        usage: dict[str, Counter] = {}
        for label, model in JOB_MODELS:
            stmt = (
                select(model.department_code, func.count(model.id))
                .where(
                    model.tenant_id == tenant_id,
                    model.department_code.is_not(None),
                    model.department_code != "",
                    model.linked_department_id.is_(None),
                    model.link_status != LinkStatus.IGNORED,
                )
                .group_by(model.department_code)
            )
            for code, count in self.session.execute(stmt):
                usage.setdefault(code, Counter())[label] += count
        return usage

    def _departments(self, tenant_id: int) -> list[Department]:
        stmt = select(Department).where(Department.tenant_id == tenant_id).order_by(Department.department_number)
        return list(self.session.scalars(stmt))

    def find_duplicates(self, tenant_id: int, min_similarity: float | None = None) -> list[DepartmentCodeGroup]:
        threshold = self.profile.default_min_similarity if min_similarity is None else float(min_similarity)
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("min_similarity must be between 0 and 1")
        departments = self._departments(tenant_id)
        groups: list[DepartmentCodeGroup] = []

        for code, counts in sorted(self.unlinked_code_usage(tenant_id).items()):
            candidates = []
            for department in departments:
                number = department.department_number or ""
                exact = bool(number.strip()) and code.strip() == number.strip()
                score = self.profile.exact_key_score if exact else similarity(code, number)
                score = round_score(score, self.profile.score_precision)
                if score >= threshold:
                    candidates.append(
                        DepartmentCandidate(
                            department_id=department.id,
                            department_number=department.department_number,
                            name=department.name,
                            similarity=score,
                            exact_match=exact,
                        )
                    )
            if not candidates:
                continue
            candidates.sort(key=lambda candidate: (-candidate.similarity, candidate.department_id))
            groups.append(
                DepartmentCodeGroup(
                    department_code=code,
                    usage_count={label: counts.get(label, 0) for label, _ in JOB_MODELS},
                    candidates=candidates[: self.profile.max_candidates],
                )
            )

        groups.sort(key=lambda group: (-group.best_score, group.department_code))
        return groups

    def _apply_code(
        self,
        code: str,
        department_id: int,
        tenant_id: int,
        actor_id: int | None,
        *,
        only_unlinked: bool,
    ) -> dict[str, int]:
        now = utcnow()
        updated: dict[str, int] = {}
        for label, model in JOB_MODELS:
            stmt = select(model).where(
                model.tenant_id == tenant_id,
                model.department_code == code,
                model.link_status != LinkStatus.IGNORED,
            )
            if only_unlinked:
                stmt = stmt.where(model.linked_department_id.is_(None))
            count = 0
            for record in self.session.scalars(stmt):
                record.linked_department_id = department_id
                if record.link_status == LinkStatus.UNMATCHED:
                    record.link_status = LinkStatus.AUTO_MATCHED
                    record.link_confidence = 1.0
                    record.linked_by = actor_id
                    record.linked_at = now
                count += 1
            updated[label] = count
        return updated

    def link_code(self, code: str, department_id: int, tenant_id: int, actor_id: int | None) -> dict[str, Any]:
        """
        Link every contract and work order carrying ``code`` to a department.

        Unmatched records move to ``auto_matched`` since they now hold a link.
        """

        code = (code or "").strip()
        if not code:
            raise ValidationError("department code is required")
        department = self.session.get(Department, department_id)
        if department is None or department.tenant_id != tenant_id:
            raise NotFoundError("Department", department_id)

        try:
            updated = self._apply_code(code, department_id, tenant_id, actor_id, only_unlinked=False)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransactionFailure("Department link", "department") from exc

        current_app.logger.info("Linked department code %s to department %s: %s", code, department_id, updated)
        return {
            "department_code": code,
            "department_id": department_id,
            "contracts_updated": updated["contracts"],
            "work_orders_updated": updated["work_orders"],
            "total_updated": sum(updated.values()),
        }

    def auto_link_exact(self, tenant_id: int, actor_id: int | None) -> dict[str, Any]:
        """Link every unlinked code whose trimmed value equals a department number."""

        by_number: dict[str, Department] = {}
        for department in self._departments(tenant_id):
            number = (department.department_number or "").strip()
            if number:
                by_number.setdefault(number, department)

        details = []
        try:
            for code in sorted(self.unlinked_code_usage(tenant_id)):
                department = by_number.get(code.strip())
                if department is None:
                    continue
                updated = self._apply_code(code, department.id, tenant_id, actor_id, only_unlinked=True)
                details.append(
                    {
                        "department_code": code,
                        "department_id": department.id,
                        "department_name": department.name,
                        "contracts_updated": updated["contracts"],
                        "work_orders_updated": updated["work_orders"],
                    }
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransactionFailure("Department auto-link", "department") from exc

        contracts = sum(item["contracts_updated"] for item in details)
        work_orders = sum(item["work_orders_updated"] for item in details)
        return {
            "codes_linked": len(details),
            "contracts_updated": contracts,
            "work_orders_updated": work_orders,
            "total_updated": contracts + work_orders,
            "details": details,
        }

    def promote_codes(self, tenant_id: int) -> dict[str, Any]:
        """Create a department for every code that has no canonical department yet."""

        existing = {
            (department.department_number or "").strip()
            for department in self._departments(tenant_id)
        }
        codes: set[str] = set()
        for _, model in JOB_MODELS:
            stmt = select(model.department_code).where(
                model.tenant_id == tenant_id,
                model.department_code.is_not(None),
                model.department_code != "",
            )
            codes.update(code.strip() for code in self.session.scalars(stmt) if code and code.strip())

        results = []
        try:
            for code in sorted(codes - existing):
                department = Department(tenant_id=tenant_id, department_number=code, name=f"Department {code}")
                self.session.add(department)
                self.session.flush()
                results.append({"department_id": department.id, "department_code": code})
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise TransactionFailure("Department promotion", "department") from exc

        return {"imported": len(results), "total": len(codes - existing), "results": results}


__all__ = ["DepartmentCandidate", "DepartmentCodeGroup", "DepartmentReconciler"]
