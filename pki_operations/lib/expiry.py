"""Remaining-validity evaluation for certificates.

Days remaining are found by bisecting the engine's "still valid at T"
predicate instead of parsing and diffing dates, so the engine stays the only
trusted time primitive.
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path

from .engine import CAEngine, CryptographyEngine
from .errors import CertNotFound
from .models import ExpiryReport, ExpiryStatus

MAX_DAYS = 7300  # ~20 years
WARNING_DAYS = 90
CRITICAL_DAYS = 30
RENEW_THRESHOLD_DAYS = 90


def days_remaining(
    cert_pem: bytes,
    engine: CAEngine | None = None,
    now: datetime | None = None,
) -> int:
    """Whole days the certificate stays valid, 0 if already expired.

    ``now`` is captured once and used for every step of the bisection.
    Certificates valid beyond ``MAX_DAYS`` report ``MAX_DAYS``.
    """
    engine = engine or CryptographyEngine()
    now = now or datetime.now(UTC)

    def valid_after(days: int) -> bool:
        return engine.is_valid_at(cert_pem, now + timedelta(days=days))

    if not valid_after(0):
        return 0
    if valid_after(MAX_DAYS):
        return MAX_DAYS

    low, high = 0, MAX_DAYS
    while high - low > 1:
        mid = (low + high) // 2
        if valid_after(mid):
            low = mid
        else:
            high = mid
    return low


def expiry_status(days: int) -> ExpiryStatus:
    if days <= 0:
        return ExpiryStatus.EXPIRED
    if days < CRITICAL_DAYS:
        return ExpiryStatus.CRITICAL
    if days < WARNING_DAYS:
        return ExpiryStatus.WARNING
    return ExpiryStatus.OK


def needs_renewal(days: int, force: bool = False) -> bool:
    """Renewal proceeds only inside the renewal window unless forced."""
    return force or days < RENEW_THRESHOLD_DAYS


def check_certificate(
    cert_path: Path,
    engine: CAEngine | None = None,
    now: datetime | None = None,
    name: str | None = None,
) -> ExpiryReport:
    """Build an expiry report for a certificate file.

    Raises:
        CertNotFound: If the certificate file does not exist
    """
    if not cert_path.is_file():
        raise CertNotFound(f"certificate not found: {cert_path}")

    days = days_remaining(cert_path.read_bytes(), engine=engine, now=now)
    return ExpiryReport(
        name=name or cert_path.stem,
        path=cert_path,
        days_remaining=days,
        status=expiry_status(days),
    )
