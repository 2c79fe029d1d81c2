import logging

from tickerpilot.core.logging import RedactSecretsFilter


def _record(msg, *args):
    return logging.LogRecord("tickerpilot.test", logging.INFO, __file__, 1, msg, args, None)


def test_configured_secrets_are_masked():
    f = RedactSecretsFilter(secrets=("pdl_ntfset_secret", ""))
    record = _record("secret is %s", "pdl_ntfset_secret")

    assert f.filter(record) is True
    assert record.getMessage() == "secret is ***"


def test_signature_digest_is_masked():
    f = RedactSecretsFilter(secrets=())
    record = _record("header ts=1700000000;h1=%s", "ab" * 32)

    f.filter(record)

    assert record.getMessage() == "header ts=1700000000;h1=***"


def test_plain_messages_untouched():
    f = RedactSecretsFilter(secrets=("pdl_ntfset_secret",))
    record = _record("Webhook processed event_id=%s", "evt_01")

    f.filter(record)

    assert record.args == ("evt_01",)
