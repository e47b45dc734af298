"""Lead records with an encrypted SIN field.

The applicant's Social Insurance Number is stored in ``leads.sin_full`` as a
``field_crypto`` token and is only decrypted where a caller needs to show or
auto-fill it.

Status rules for :func:`save_lead`:

- public application: new lead is ``UNASSIGNED``
- staff-entered lead: new lead is ``CONNECTED``
- public resubmission of an existing lead: back to ``UNASSIGNED``, flagged
  as a resubmission, application count incremented
- staff edit of an existing lead: status and application tracking untouched
"""

import logging
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, or_
from sqlalchemy.orm import Session

from leaddesk.helpers import field_crypto
from leaddesk.helpers.crm_db import Base

logger = logging.getLogger(__name__)

SIN_PLACEHOLDER = "XXX-XXX-XXX"

# Nine digits, optionally grouped 3-3-3 by '-', '.' or ' '
SIN_RE = re.compile(r"\d{3}[-. ]?\d{3}[-. ]?\d{3}", re.ASCII)

STATUS_UNASSIGNED = "UNASSIGNED"
STATUS_CONNECTED = "CONNECTED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String, primary_key=True)  # UUID
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=False, index=True)
    sin_full = Column(Text, nullable=True)  # iv:ciphertext token via field_crypto
    consent_given = Column(Boolean, default=False)
    consent_timestamp = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default=STATUS_UNASSIGNED)
    is_resubmission = Column(Boolean, nullable=False, default=False)
    application_count = Column(Integer, nullable=False, default=1)
    last_application_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


def save_lead(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    email: str,
    phone: str,
    sin: str,
    consent_given: bool,
    lead_id: str | None = None,
    internal: bool = False,
) -> Lead:
    """Create a lead, or update ``lead_id`` in place, encrypting the SIN.

    An internal (staff) edit keeps the original consent timestamp, status
    and application tracking; an applicant resubmission resets the lead to
    ``UNASSIGNED`` and counts the new application.

    Raises:
        ValueError: If ``sin`` is not nine digits (optionally 3-3-3 grouped).
            Checked before anything is encrypted or written.
        LookupError: If ``lead_id`` is given but no such lead exists.
        field_crypto.ConfigurationError: If ``ENCRYPTION_KEY`` is not set.
    """
    if not isinstance(sin, str) or not SIN_RE.fullmatch(sin):
        raise ValueError("SIN must be exactly 9 digits")

    encrypted_sin = field_crypto.encrypt(sin)

    if lead_id:
        lead = db.query(Lead).filter(Lead.id == lead_id).first()
        if lead is None:
            raise LookupError(f"Lead {lead_id} not found")
        lead.first_name = first_name
        lead.last_name = last_name
        lead.email = email
        lead.phone = phone
        lead.sin_full = encrypted_sin
        lead.consent_given = consent_given
        if not internal:
            lead.status = STATUS_UNASSIGNED
            lead.last_application_date = lead.created_at
            lead.application_count = (lead.application_count or 1) + 1
            lead.is_resubmission = True
            lead.consent_timestamp = _utcnow()
        return lead

    lead = Lead(
        id=str(uuid.uuid4()),
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
        sin_full=encrypted_sin,
        consent_given=consent_given,
        consent_timestamp=_utcnow(),
        status=STATUS_CONNECTED if internal else STATUS_UNASSIGNED,
        is_resubmission=False,
        application_count=1,
    )
    db.add(lead)
    return lead


def find_existing_lead(db: Session, email: str, phone: str) -> dict | None:
    """Look up a returning applicant for form auto-fill.

    Both ``email`` and ``phone`` are required; the most recently created
    lead matching either one wins.  The returned dict carries the decrypted
    SIN.  Decryption errors are not caught here: a token that cannot be read
    should fail the lookup rather than auto-fill a blank.

    Raises:
        ValueError: If ``email`` or ``phone`` is missing.
    """
    if not email or not phone:
        raise ValueError("Email and phone are required")

    lead = (
        db.query(Lead)
        .filter(or_(Lead.email == email, Lead.phone == phone))
        .order_by(Lead.created_at.desc())
        .first()
    )
    if lead is None:
        return None

    return {
        "id": lead.id,
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "email": lead.email,
        "phone": lead.phone,
        "sin_full": field_crypto.decrypt(lead.sin_full) if lead.sin_full else "",
        "consent_given": lead.consent_given,
        "status": lead.status,
    }


def get_visible_sin(lead: Lead) -> str:
    """Return the lead's decrypted SIN, or the masked placeholder."""
    if not lead.sin_full:
        return SIN_PLACEHOLDER
    try:
        return field_crypto.decrypt(lead.sin_full)
    except field_crypto.FieldCryptoError as e:
        logger.warning("Failed to decrypt SIN for lead %s: %s", lead.id, type(e).__name__)
        return SIN_PLACEHOLDER


def lead_to_edit_dict(lead: Lead) -> dict:
    """Edit-form payload with the encrypted SIN replaced by its plaintext."""
    visible_sin = get_visible_sin(lead)
    return {
        "id": lead.id,
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "email": lead.email,
        "phone": lead.phone,
        "sin_full": visible_sin if visible_sin != SIN_PLACEHOLDER else "",
        "consent_given": lead.consent_given,
        "consent_timestamp": (
            lead.consent_timestamp.isoformat() if lead.consent_timestamp else None
        ),
        "status": lead.status,
    }


def delete_all_leads(db: Session) -> int:
    """Delete every lead and return the number of rows removed."""
    return db.query(Lead).delete()
