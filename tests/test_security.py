from datetime import timedelta

from inventory_desk import security

SECRET = "unit-test-secret"
DAY = 24 * 60 * 60


def test_password_hash_round_trip() -> None:
    stored = security.hash_password("s3cret-pass")

    assert stored != "s3cret-pass"
    assert security.verify_password("s3cret-pass", stored)
    assert not security.verify_password("wrong-pass", stored)


def test_hashes_are_salted() -> None:
    assert security.hash_password("same") != security.hash_password("same")


def test_session_carries_username_and_expiry() -> None:
    token = security.issue_session("clerk", SECRET, issued_at=1_700_000_000)

    session = security.read_session(token, SECRET, DAY, now=1_700_000_100)

    assert session is not None
    assert session.username == "clerk"
    assert session.expires_at - session.issued_at == timedelta(seconds=DAY)


def test_session_expires_from_issue_time() -> None:
    token = security.issue_session("clerk", SECRET, issued_at=1_700_000_000)

    assert security.read_session(token, SECRET, DAY, now=1_700_000_000 + DAY - 1) is not None
    assert security.read_session(token, SECRET, DAY, now=1_700_000_000 + DAY) is None


def test_tampered_or_foreign_tokens_are_rejected() -> None:
    token = security.issue_session("clerk", SECRET, issued_at=1_700_000_000)
    payload, signature = token.rsplit(".", 1)

    assert security.read_session(f"admin:1700000000.{signature}", SECRET, DAY, now=1_700_000_001) is None
    assert security.read_session(token, "another-secret", DAY, now=1_700_000_001) is None
    assert security.read_session(payload, SECRET, DAY, now=1_700_000_001) is None
    assert security.read_session("garbage", SECRET, DAY) is None


def test_tokens_from_the_future_are_rejected() -> None:
    token = security.issue_session("clerk", SECRET, issued_at=1_700_010_000)

    assert security.read_session(token, SECRET, DAY, now=1_700_000_000) is None


def test_usernames_with_colons_survive() -> None:
    token = security.issue_session("team:stock", SECRET, issued_at=1_700_000_000)

    session = security.read_session(token, SECRET, DAY, now=1_700_000_001)

    assert session is not None and session.username == "team:stock"


def test_hash_records_scheme_and_iterations() -> None:
    stored = security.hash_password("s3cret-pass", iterations=1_000)

    scheme, iterations, _salt, _digest = stored.split("$")
    assert (scheme, iterations) == ("pbkdf2_sha256", "1000")
    assert security.verify_password("s3cret-pass", stored)


def test_malformed_hashes_never_match() -> None:
    assert not security.verify_password("pw", "")
    assert not security.verify_password("pw", "salt:digest")
    assert not security.verify_password("pw", "pbkdf2_sha256$many$AAAA$AAAA")
    assert not security.verify_password("pw", "pbkdf2_sha256$1000$not base64!$AAAA")
    assert not security.verify_password("pw", "pbkdf2_sha256$0$AAAA$AAAA")
