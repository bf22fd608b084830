import time

import pytest

from sftp_bridge.auth.authenticator import Authenticator
from sftp_bridge.auth.security import get_password_hash, pwd_context, verify_password
from sftp_bridge.common.exceptions import AuthenticationError


@pytest.fixture
def authenticator(credential_store):
    return Authenticator(credential_store)


def _audit_messages(caplog):
    return [r.getMessage() for r in caplog.records if r.name == "sftp_bridge.audit"]


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_success_builds_user_context(self, authenticator):
        user = await authenticator.authenticate("admin1", "admin001", remote="10.0.0.5:51000")
        assert user.username == "admin1"
        assert user.role == "admin"
        assert user.allowed_models == frozenset({"SS1416"})

    @pytest.mark.asyncio
    async def test_empty_scope_means_all_models(self, authenticator):
        user = await authenticator.authenticate("dl_all", "dl-pass")
        assert user.all_models

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "username, password, reason",
        [
            ("ghost", "whatever", "unknown_user"),
            ("disabled_admin", "secret", "disabled"),
            ("admin1", "wrong", "bad_password"),
            ("admin1", "", "bad_password"),
        ],
    )
    async def test_rejections_carry_audit_reason(
        self, authenticator, caplog, username, password, reason
    ):
        with caplog.at_level("INFO", logger="sftp_bridge.audit"):
            with pytest.raises(AuthenticationError) as exc_info:
                await authenticator.authenticate(username, password)
        assert exc_info.value.reason == reason
        (message,) = _audit_messages(caplog)
        assert f"user={username}" in message
        assert "outcome=failure" in message
        assert f"reason={reason}" in message

    @pytest.mark.asyncio
    async def test_disabled_account_rejected_even_with_right_password(self, authenticator):
        with pytest.raises(AuthenticationError):
            await authenticator.authenticate("disabled_admin", "secret")

    @pytest.mark.asyncio
    async def test_store_failure_is_an_authentication_failure(self, authenticator, credential_store):
        credential_store.broken = True
        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate("admin1", "admin001")
        assert exc_info.value.reason == "error"

    @pytest.mark.asyncio
    async def test_success_is_audited(self, authenticator, caplog):
        with caplog.at_level("INFO", logger="sftp_bridge.audit"):
            await authenticator.authenticate("admin_all", "admin-pass", remote="1.2.3.4:22")
        (message,) = _audit_messages(caplog)
        assert "outcome=success" in message
        assert "remote=1.2.3.4:22" in message

    @pytest.mark.asyncio
    async def test_password_never_logged(self, authenticator, caplog):
        with caplog.at_level("DEBUG"):
            with pytest.raises(AuthenticationError):
                await authenticator.authenticate("admin1", "hunter2-secret")
        assert all("hunter2-secret" not in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unknown_role_still_authenticates(self, authenticator):
        user = await authenticator.authenticate("auditor", "auditor-pass")
        assert user.role == "auditor"

    @pytest.mark.asyncio
    async def test_login_not_queued_behind_default_executor(
        self, authenticator, busy_default_executor
    ):
        started = time.monotonic()
        user = await authenticator.authenticate("dl_all", "dl-pass")
        assert user.username == "dl_all"
        assert time.monotonic() - started < busy_default_executor / 2


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = get_password_hash("firmware-pass")
        assert hashed.startswith("$2")
        assert verify_password("firmware-pass", hashed)
        assert not verify_password("other", hashed)

    def test_malformed_hash_never_verifies(self):
        assert not verify_password("x", "not-a-bcrypt-hash")

    def test_context_is_bcrypt(self):
        assert pwd_context.default_scheme() == "bcrypt"
