import re
import secrets
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta
from passlib.context import CryptContext

from config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.PIN_HASH_ROUNDS,
)

PIN_PATTERN = re.compile(r"^[0-9]{4}$")
CONTACT_PATTERN = re.compile(r"^\+?[1-9]\d{0,15}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-month arithmetic: Jan 31 + 1 month is the last day of February."""
    return moment + relativedelta(months=months)


def hash_secret(secret: str) -> str:
    return pwd_context.hash(secret)


def verify_secret(secret: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(secret, hashed)
    except ValueError:
        # Not a hash passlib recognizes
        return False


def generate_numeric_code(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def normalize_contact_no(raw: str) -> str:
    return re.sub(r"\D", "", str(raw))


def is_valid_pin(pin: str) -> bool:
    return bool(PIN_PATTERN.match(str(pin)))


def is_valid_contact_no(raw: str) -> bool:
    cleaned = re.sub(r"[\s\-\(\)]", "", str(raw))
    return bool(CONTACT_PATTERN.match(cleaned))
