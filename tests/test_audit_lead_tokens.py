"""Tests for the leaddesk.scripts.audit_lead_tokens maintenance script."""

import pytest

from leaddesk.helpers import field_crypto
from leaddesk.helpers.lead_store import Lead, save_lead
from leaddesk.scripts import audit_lead_tokens


@pytest.fixture(autouse=True)
def _key(encryption_key):
    yield encryption_key


@pytest.fixture
def db_url(crm_database, tmp_path):
    """URL of a SQLite file that does not exist yet."""
    return f"sqlite:///{tmp_path / 'crm.db'}"


def _seed(crm_database, url: str, tokens: dict[str, str | None]) -> None:
    crm_database.init_db(url)
    with crm_database.get_session() as session:
        for lead_id, token in tokens.items():
            session.add(
                Lead(
                    id=lead_id,
                    first_name="Test",
                    last_name=lead_id,
                    email=f"{lead_id}@example.com",
                    phone="555-0100",
                    sin_full=token,
                )
            )


def _bad_lead(lead_id: str, token: str | None) -> Lead:
    return Lead(
        id=lead_id, first_name="a", last_name="b", email="c", phone="d", sin_full=token
    )


class TestAuditTokens:
    def test_classifies_each_lead(self, db_session):
        good = save_lead(
            db_session,
            first_name="Good",
            last_name="Lead",
            email="good@example.com",
            phone="1",
            sin="123-456-789",
            consent_given=True,
        )
        db_session.add_all(
            [
                _bad_lead("bad-shape", "deadbeef"),
                _bad_lead("bad-cipher", "00:00"),
                _bad_lead("no-sin", None),
                _bad_lead("blank-sin", ""),
            ]
        )
        db_session.commit()

        results = audit_lead_tokens.audit_tokens(db_session)
        assert results == {
            "ok": [good.id],
            "malformed": ["bad-shape"],
            "undecryptable": ["bad-cipher"],
        }


class TestMain:
    def test_fresh_database_end_to_end(self, crm_database, db_url, capsys):
        """init_db creates the schema, save_lead writes, main() audits."""
        crm_database.init_db(db_url)
        with crm_database.get_session() as session:
            lead = save_lead(
                session,
                first_name="Fresh",
                last_name="Start",
                email="fresh@example.com",
                phone="555-0300",
                sin="046 454 286",
                consent_given=True,
            )
            lead_id = lead.id

        assert audit_lead_tokens.main(["--database-url", db_url]) == 0
        out = capsys.readouterr().out
        assert "Checked 1 leads: 1 ok" in out
        assert lead_id not in out
        assert "046 454 286" not in out

    def test_empty_fresh_database_exits_zero(self, db_url, capsys):
        assert audit_lead_tokens.main(["--database-url", db_url]) == 0
        assert "Checked 0 leads" in capsys.readouterr().out

    def test_all_ok_exits_zero(self, crm_database, db_url, capsys):
        _seed(crm_database, db_url, {"lead-1": field_crypto.encrypt("111-111-111")})

        assert audit_lead_tokens.main(["--database-url", db_url]) == 0
        out = capsys.readouterr().out
        assert "1 ok, 0 malformed, 0 undecryptable" in out
        assert "111-111-111" not in out

    def test_failures_exit_one_and_list_ids(self, crm_database, db_url, capsys):
        _seed(
            crm_database,
            db_url,
            {
                "lead-ok": field_crypto.encrypt("111-111-111"),
                "lead-bad": "not-a-valid-token",
                "lead-blank": "",
            },
        )

        assert audit_lead_tokens.main(["--database-url", db_url]) == 1
        out = capsys.readouterr().out
        assert "malformed: lead-bad" in out
        assert "lead-ok" not in out
        assert "lead-blank" not in out
        assert "Checked 2 leads" in out

    def test_missing_key_exits_two(self, db_url, monkeypatch, capsys):
        monkeypatch.delenv("ENCRYPTION_KEY")
        monkeypatch.setattr(audit_lead_tokens, "load_dotenv", lambda **kwargs: False)

        assert audit_lead_tokens.main(["--database-url", db_url]) == 2
        assert "ENCRYPTION_KEY is not set" in capsys.readouterr().err
