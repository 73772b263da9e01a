import os
import logging

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from medrental.database import SessionLocal, create_tables
from medrental import crud, models
from medrental.core.clock import utc_now
from medrental.security import get_password_hash

logger = logging.getLogger("seed_admin")


def get_env(name: str, default: str | None = None, required: bool = False) -> str:
    val = os.getenv(name, default)
    if required and not val:
        raise RuntimeError(f"Missing required env var: {name}")
    return val or ""


def upsert_admin(db: Session) -> models.Technician:
    name = get_env("ADMIN_DEFAULT_NAME", "Administrator")
    email = get_env("ADMIN_DEFAULT_EMAIL", "admin@example.com")
    raw_password = get_env("ADMIN_DEFAULT_PASSWORD", required=True)

    technician = crud.get_technician_by_email(db, email=email)
    password_hash = get_password_hash(raw_password)

    if technician:
        # Keep an existing account but make sure it is an active admin with a known password
        technician.name = name
        technician.role = models.TechnicianRole.ADMIN
        technician.is_active = True
        technician.password_hash = password_hash
        technician.updated_at = utc_now()
        action = "updated"
    else:
        technician = models.Technician(
            name=name,
            email=email,
            role=models.TechnicianRole.ADMIN,
            is_active=True,
            password_hash=password_hash,
        )
        db.add(technician)
        action = "created"

    db.commit()
    logger.info(f"Admin technician {action}: email='{email}'")
    return technician


def main():
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format='%(levelname)-8s %(name)s: %(message)s')

    _ = get_env("ADMIN_DEFAULT_PASSWORD", required=True)

    create_tables()
    db = SessionLocal()
    try:
        upsert_admin(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
