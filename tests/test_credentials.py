import pytest

from services.credentials import SECRET_NAMES, CredentialSource
from services.errors import CredentialsUnavailable
from services.retry import RetryPolicy


def test_load_reads_all_four_secrets(credentials, sleeps):
    bundle = credentials.load()

    assert bundle.username == "root"
    assert bundle.password == "s3cret"
    assert bundle.namespace == "core"
    assert bundle.database == "services"
    assert sleeps == []


def test_password_not_in_repr(credentials):
    assert "s3cret" not in repr(credentials.load())


@pytest.mark.parametrize("missing", SECRET_NAMES)
def test_any_missing_secret_fails_after_deadline(keyvault, missing):
    (keyvault / missing).unlink()
    sleeps = []
    source = CredentialSource(keyvault, RetryPolicy.deadline(60, 2, sleep=sleeps.append))

    with pytest.raises(CredentialsUnavailable) as exc:
        source.load()

    assert missing in str(exc.value)
    assert sum(sleeps) == 60
    assert set(sleeps) == {2}


def test_waits_until_secrets_appear(keyvault):
    password = (keyvault / "password").read_text()
    (keyvault / "password").unlink()
    calls = []

    def sleep(delay):
        calls.append(delay)
        if len(calls) == 2:
            (keyvault / "password").write_text(password)

    bundle = CredentialSource(keyvault, RetryPolicy.deadline(60, 2, sleep=sleep)).load()

    assert bundle.password == "s3cret"
    assert calls == [2, 2]


def test_rotated_secret_is_picked_up_on_next_load(credentials, keyvault):
    assert credentials.load().password == "s3cret"
    (keyvault / "password").write_text("rotated")
    assert credentials.load().password == "rotated"


def test_undecodable_secret_is_unavailable(credentials, keyvault, sleeps):
    (keyvault / "username").write_bytes(b"\xff\xfe\xfa")

    with pytest.raises(CredentialsUnavailable):
        credentials.load()
    assert sleeps == []
