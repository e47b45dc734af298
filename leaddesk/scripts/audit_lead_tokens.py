"""Check that every stored lead SIN decrypts under the active ENCRYPTION_KEY.

Usage::

    python -m leaddesk.scripts.audit_lead_tokens --database-url sqlite:///usr/crm.db

Prints the ids of leads whose token is malformed or undecryptable.  Never
prints plaintext or tokens.

Exit codes: 0 all tokens decrypt, 1 some failed, 2 no key configured.
"""

import argparse
import logging
import sys

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from leaddesk.helpers import crm_db, field_crypto
from leaddesk.helpers.lead_store import Lead

logger = logging.getLogger(__name__)


def audit_tokens(db: Session) -> dict[str, list[str]]:
    """Classify every lead with a stored SIN as ok, malformed or undecryptable."""
    results: dict[str, list[str]] = {"ok": [], "malformed": [], "undecryptable": []}
    leads = (
        db.query(Lead)
        .filter(Lead.sin_full.isnot(None), Lead.sin_full != "")
        .order_by(Lead.id)
        .all()
    )
    for lead in leads:
        try:
            field_crypto.decrypt(lead.sin_full)
        except field_crypto.MalformedTokenError:
            results["malformed"].append(lead.id)
            logger.debug("Lead %s: malformed SIN token", lead.id)
        except field_crypto.DecryptionError:
            results["undecryptable"].append(lead.id)
            logger.debug("Lead %s: SIN token does not decrypt", lead.id)
        else:
            results["ok"].append(lead.id)
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    load_dotenv(override=False)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if not field_crypto.FieldCryptoConfig.from_env().master_secret:
        print(f"Error: {field_crypto.ENV_VAR} is not set", file=sys.stderr)
        return 2

    crm_db.init_db(args.database_url)
    with crm_db.get_session() as db:
        results = audit_tokens(db)

    for status in ("malformed", "undecryptable"):
        for lead_id in results[status]:
            print(f"{status}: {lead_id}")

    failed = len(results["malformed"]) + len(results["undecryptable"])
    print(
        f"Checked {len(results['ok']) + failed} leads: "
        f"{len(results['ok'])} ok, {len(results['malformed'])} malformed, "
        f"{len(results['undecryptable'])} undecryptable"
    )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
