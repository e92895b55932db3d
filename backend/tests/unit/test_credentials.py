from datetime import datetime, timedelta

from miniorg.services.credentials import (
    CODE_EXPIRY_MINUTES,
    generate_code,
    get_code_expiry,
    hash_password,
    normalize_email,
    validate_email,
    validate_password,
    verify_password,
)


def test_password_hash_roundtrip():
    hashed = hash_password("Str0ng!pass")
    assert hashed != "Str0ng!pass"
    assert verify_password("Str0ng!pass", hashed)
    assert not verify_password("wrong", hashed)


def test_verify_password_tolerates_missing_or_garbage_hash():
    assert not verify_password("anything", None)
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_validate_password_reports_every_violation():
    result = validate_password("abc")
    assert not result.valid
    # too short, no uppercase, no digit, no symbol
    assert len(result.errors) == 4


def test_validate_password_accepts_strong():
    result = validate_password("Abcdef1!")
    assert result.valid
    assert result.errors == []


def test_validate_email():
    assert validate_email("a@b.co")
    assert not validate_email("no-at-sign")
    assert not validate_email("a b@c.d")
    assert not validate_email("")
    assert not validate_email(None)


def test_normalize_email():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"


def test_generate_code_is_six_digits():
    for _ in range(50):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()


def test_code_expiry_is_fifteen_minutes():
    now = datetime(2026, 1, 1, 12, 0)
    assert CODE_EXPIRY_MINUTES == 15
    assert get_code_expiry(now) == now + timedelta(minutes=15)
