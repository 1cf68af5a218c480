# model/tenants.py
# Read-only view of the companies/users tables owned by the main application.
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text

from ..infra.sql import GatedAsyncSession
from .orm import ROLE_COMPANY_ADMIN, ROLE_SUPER_ADMIN


@dataclass(frozen=True)
class Actor:
    id: int
    company_id: Optional[int]
    role: str
    email: str

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def is_admin_of(self, company_id: int) -> bool:
        return (
            self.role == ROLE_COMPANY_ADMIN
            and self.company_id is not None
            and self.company_id == company_id
        )

    def belongs_to(self, company_id: int) -> bool:
        return self.company_id is not None and self.company_id == company_id


@dataclass(frozen=True)
class CompanyInfo:
    id: int
    name: str
    email: str


async def get_actor(db: GatedAsyncSession, user_id: int) -> Optional[Actor]:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(text("""
                SELECT id, company_id, role, email FROM users WHERE id = :id
            """), {"id": user_id})).mappings().first()
    if row is None:
        return None
    return Actor(
        id=int(row["id"]),
        company_id=(
            int(row["company_id"]) if row["company_id"] is not None else None
        ),
        role=row["role"],
        email=row["email"],
    )


async def get_company(
    db: GatedAsyncSession, company_id: int
) -> Optional[CompanyInfo]:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(text("""
                SELECT id, name, email FROM companies WHERE id = :id
            """), {"id": company_id})).mappings().first()
    if row is None:
        return None
    return CompanyInfo(id=int(row["id"]), name=row["name"], email=row["email"])
