from sqlalchemy import select

from printflow.config import settings
from printflow.db import SessionLocal, engine
from printflow.models import Base, CompanyContact, ContactPurpose
from printflow.services.company_service import BROKER_ID, TIER1_VENDOR_ID, TIER2_VENDOR_ID, ensure_default_companies
from printflow.services.paper_inventory_service import initialize_inventory

SEED_CONTACTS = (
    (TIER1_VENDOR_ID, 'Bradford Production', 'steve.gustafson@bgeltd.com', ContactPurpose.PRODUCTION),
    (BROKER_ID, 'Impact Direct Billing', 'brandon@impactdirectprinting.com', ContactPurpose.BILLING),
)


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        ensure_default_companies(db)

        contacts = [*SEED_CONTACTS]
        contacts.extend(
            (TIER2_VENDOR_ID, None, email, ContactPurpose.PRODUCTION) for email in settings.tier2_production_emails
        )
        for company_id, name, email, purpose in contacts:
            existing = db.execute(
                select(CompanyContact).where(
                    CompanyContact.company_id == company_id,
                    CompanyContact.email_to == email,
                    CompanyContact.purpose == purpose,
                )
            ).scalar_one_or_none()
            if not existing:
                db.add(CompanyContact(company_id=company_id, contact_name=name, email_to=email, purpose=purpose))

        initialize_inventory(db, company_id=TIER1_VENDOR_ID)
        db.commit()


if __name__ == '__main__':
    seed()
