from core.credential_store import DomainCredentialStore


def test_set_get_clear_credential():
    DomainCredentialStore.set_credential("admin", "s3cret")

    credential = DomainCredentialStore.get_credential()
    assert credential.username == "admin"
    assert credential.password.get_secret_value() == "s3cret"

    DomainCredentialStore.clear_credential()
    assert DomainCredentialStore.get_credential() is None
