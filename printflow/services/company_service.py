from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from printflow.config import settings
from printflow.errors import NotFoundError
from printflow.models import Company, CompanyContact, CompanyRole, ContactPurpose

BROKER_ID = 'impact-direct'
TIER1_VENDOR_ID = 'bradford'
TIER2_VENDOR_ID = 'jd-graphic'
CUSTOMER_ACCOUNT_IDS = frozenset({'jjsa', 'ballantine'})
CUSTOMER_CODE_TO_ID = {'JJSG': 'jjsa', 'BALSG': 'ballantine'}

DEFAULT_COMPANIES = (
    {'id': BROKER_ID, 'name': 'Impact Direct', 'role': CompanyRole.BROKER, 'tier': None, 'vendor_code': None},
    {'id': TIER1_VENDOR_ID, 'name': 'Bradford', 'role': CompanyRole.VENDOR, 'tier': 1, 'vendor_code': '001'},
    {'id': TIER2_VENDOR_ID, 'name': 'JD Graphic', 'role': CompanyRole.VENDOR, 'tier': 2, 'vendor_code': '002'},
    {'id': 'jjsa', 'name': 'JJSA', 'role': CompanyRole.CUSTOMER, 'tier': None, 'vendor_code': None},
    {'id': 'ballantine', 'name': 'Ballantine', 'role': CompanyRole.CUSTOMER, 'tier': None, 'vendor_code': None},
)


def ensure_default_companies(db: Session) -> list[Company]:
    """Insert the brokerage's fixed participants if they are missing."""
    companies = []
    for spec in DEFAULT_COMPANIES:
        company = db.get(Company, spec['id'])
        if not company:
            company = Company(**spec)
            db.add(company)
        companies.append(company)
    db.flush()
    return companies


def get_company(db: Session, company_id: str) -> Company:
    company = db.get(Company, company_id)
    if not company:
        raise NotFoundError(f'Company {company_id} not found')
    return company


def list_companies(db: Session, *, role: CompanyRole | None = None) -> list[Company]:
    stmt = select(Company).order_by(Company.name.asc())
    if role is not None:
        stmt = stmt.where(Company.role == role)
    return db.execute(stmt).scalars().all()


def is_customer_account(company_id: str) -> bool:
    return company_id in CUSTOMER_ACCOUNT_IDS


def contact_emails(db: Session, company_id: str, *, purpose: ContactPurpose) -> list[str]:
    return db.execute(
        select(CompanyContact.email_to)
        .where(
            CompanyContact.company_id == company_id,
            CompanyContact.purpose == purpose,
            CompanyContact.active.is_(True),
        )
        .order_by(CompanyContact.id.asc())
    ).scalars().all()


def production_recipients(db: Session, company_id: str) -> list[str]:
    emails = contact_emails(db, company_id, purpose=ContactPurpose.PRODUCTION)
    if emails:
        return emails
    if company_id == TIER2_VENDOR_ID:
        return list(settings.tier2_production_emails)
    company = db.get(Company, company_id)
    return [company.email] if company and company.email else []


def serialize_company(company: Company) -> dict:
    return {
        'id': company.id,
        'name': company.name,
        'role': company.role.value,
        'tier': company.tier,
        'vendor_code': company.vendor_code,
        'email': company.email,
    }
