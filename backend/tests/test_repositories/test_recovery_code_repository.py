"""Tests for TOTPRepository and RecoveryCodeRepository."""

import re

import pytest
from sqlalchemy.orm import Session

import repositories.db_models as db_models
from models.config import settings
from repositories.totp_repository import RecoveryCodeRepository, TOTPRepository


class TestTOTPRepository:
    """Secret storage and state flags on the user row."""

    def test_secret_is_encrypted_at_rest(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = TOTPRepository(db_session)
        repo.store_pending_secret(test_user, "JBSWY3DPEHPK3PXP")
        db_session.commit()

        assert test_user.totp_secret != "JBSWY3DPEHPK3PXP"
        assert repo.get_secret(test_user) == "JBSWY3DPEHPK3PXP"
        assert test_user.totp_enabled is False

    def test_get_secret_none_when_not_set_up(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        assert TOTPRepository(db_session).get_secret(test_user) is None

    def test_missing_key_raises_value_error(
        self,
        db_session: Session,
        test_user: db_models.User,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(settings, "TOTP_ENCRYPTION_KEY", "")

        with pytest.raises(ValueError, match="not configured"):
            TOTPRepository(db_session).encrypt_secret("JBSWY3DPEHPK3PXP")

    def test_decrypt_with_garbage_raises_value_error(
        self, db_session: Session
    ) -> None:
        with pytest.raises(ValueError, match="decrypt"):
            TOTPRepository(db_session).decrypt_secret("not-a-fernet-token")

    def test_record_time_step_only_moves_forward(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = TOTPRepository(db_session)

        assert repo.record_time_step(test_user, 100) is True
        assert test_user.totp_last_used_step == 100
        assert repo.record_time_step(test_user, 100) is False
        assert repo.record_time_step(test_user, 99) is False
        assert repo.record_time_step(test_user, 101) is True
        db_session.commit()

        db_session.refresh(test_user)
        assert test_user.totp_last_used_step == 101

    def test_clear_resets_everything(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = TOTPRepository(db_session)
        repo.store_pending_secret(test_user, "JBSWY3DPEHPK3PXP")
        repo.mark_enabled(test_user)
        repo.record_time_step(test_user, 42)

        repo.clear(test_user)
        db_session.commit()

        assert test_user.totp_secret is None
        assert test_user.totp_enabled is False
        assert test_user.totp_enabled_at is None
        assert test_user.totp_last_used_step is None


class TestRecoveryCodeRepository:
    """Recovery code generation, lookup and consumption."""

    def test_create_codes_returns_ten_distinct_codes(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = RecoveryCodeRepository(db_session)
        codes = repo.create_codes(str(test_user.id))
        db_session.commit()

        assert len(codes) == 10
        assert len(set(codes)) == 10
        assert all(re.fullmatch(r"[A-Z0-9]{10}", c) for c in codes)
        assert repo.get_remaining_count(str(test_user.id)) == 10

    def test_only_hashes_are_stored(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = RecoveryCodeRepository(db_session)
        codes = repo.create_codes(str(test_user.id))
        db_session.commit()

        stored = {r.code_hash for r in repo.get_unused_codes(str(test_user.id))}
        assert not stored & set(codes)
        assert all(h.startswith("$2") for h in stored)

    def test_create_codes_replaces_previous_batch(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = RecoveryCodeRepository(db_session)
        old = repo.create_codes(str(test_user.id))
        new = repo.create_codes(str(test_user.id))
        db_session.commit()

        assert repo.count_user_codes(str(test_user.id)) == 10
        assert repo.find_matching_code(str(test_user.id), new[0]) is not None
        stale = [c for c in old if c not in new]
        assert repo.find_matching_code(str(test_user.id), stale[0]) is None

    def test_find_matching_code_normalizes_input(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = RecoveryCodeRepository(db_session)
        codes = repo.create_codes(str(test_user.id))
        db_session.commit()

        typed = f" {codes[3][:5].lower()}-{codes[3][5:].lower()} "
        record = repo.find_matching_code(str(test_user.id), typed)

        assert record is not None

    def test_find_matching_code_is_scoped_to_user(
        self,
        db_session: Session,
        test_user: db_models.User,
        other_user: db_models.User,
    ) -> None:
        repo = RecoveryCodeRepository(db_session)
        codes = repo.create_codes(str(test_user.id))
        db_session.commit()

        assert repo.find_matching_code(str(other_user.id), codes[0]) is None

    def test_mark_used_succeeds_once(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = RecoveryCodeRepository(db_session)
        codes = repo.create_codes(str(test_user.id))
        db_session.commit()
        record = repo.find_matching_code(str(test_user.id), codes[0])
        assert record is not None
        assert record.used_at is None

        assert repo.mark_used(record.id) is True
        db_session.commit()
        db_session.refresh(record)
        assert record.used is True
        assert record.used_at is not None
        first_used_at = record.used_at

        assert repo.mark_used(record.id) is False
        db_session.commit()
        db_session.refresh(record)
        assert record.used_at == first_used_at

        assert repo.find_matching_code(str(test_user.id), codes[0]) is None
        assert repo.get_remaining_count(str(test_user.id)) == 9
        assert repo.count_user_codes(str(test_user.id)) == 10

    def test_verify_code_hash_rejects_malformed_hash(self) -> None:
        assert RecoveryCodeRepository.verify_code_hash("ABC", "not-a-hash") is False

    def test_delete_user_codes(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = RecoveryCodeRepository(db_session)
        repo.create_codes(str(test_user.id))
        db_session.commit()

        assert repo.delete_user_codes(str(test_user.id)) == 10
        db_session.commit()
        assert repo.count_user_codes(str(test_user.id)) == 0
