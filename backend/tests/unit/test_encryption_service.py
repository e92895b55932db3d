import pytest
from cryptography.fernet import Fernet

from miniorg.services.encryption_service import EncryptionService, TokenDecryptError


def test_round_trip_and_optional():
    svc = EncryptionService(Fernet.generate_key())
    assert svc.decrypt(svc.encrypt("access-1")) == "access-1"
    assert svc.decrypt_optional(None) is None


def test_old_key_still_decrypts_after_rotation():
    old, new = Fernet.generate_key(), Fernet.generate_key()
    legacy = EncryptionService(old).encrypt("refresh-1")

    svc = EncryptionService(f"{new.decode()}, {old.decode()}")
    assert svc.decrypt(legacy) == "refresh-1"

    rotated = svc.rotate(legacy)
    assert EncryptionService(new).decrypt(rotated) == "refresh-1"


def test_unknown_key_raises_decrypt_error():
    token = EncryptionService(Fernet.generate_key()).encrypt("x")
    with pytest.raises(TokenDecryptError):
        EncryptionService(Fernet.generate_key()).decrypt(token)


def test_is_stale_only_for_older_keys():
    old, new = Fernet.generate_key(), Fernet.generate_key()
    svc = EncryptionService([new, old])
    assert svc.is_stale(EncryptionService(old).encrypt("x")) is True
    assert svc.is_stale(svc.encrypt("x")) is False
    assert svc.is_stale(EncryptionService(Fernet.generate_key()).encrypt("x")) is False
