"""
Sentry initialization helper. Read SENTRY_DSN from env via Settings.
"""
import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from paychannel.core.config import settings

# never shipped to Sentry, even if they end up in a frame's locals or extra data
SECRET_SETTINGS = ("CRYPTO_MASTER_SEED", "CRYPTO_MASTER_MNEMONIC", "CRYPTO_MASTER_PASSPHRASE", "CRYPTO_ENCRYPTION_KEY")


def scrub_secrets(event, hint=None):
    secrets = [v for v in (getattr(settings, name, None) for name in SECRET_SETTINGS) if v]
    if not secrets:
        return event

    def scrub(value):
        if isinstance(value, str):
            for secret in secrets:
                value = value.replace(secret, "[redacted]")
            return value
        if isinstance(value, dict):
            return {k: scrub(v) for k, v in value.items()}
        if isinstance(value, list):
            return [scrub(v) for v in value]
        return value

    return scrub(event)


def init_sentry(release: str = "paychannel@1.0.0"):
    dsn = getattr(settings, "SENTRY_DSN", None)
    if not dsn:
        return False
    sentry_logging = LoggingIntegration(
        level=None,
        event_level="ERROR",  # logger.exception / logger.error become events
    )
    sentry_sdk.init(
        dsn,
        integrations=[sentry_logging],
        traces_sample_rate=0.0,
        send_default_pii=False,
        release=release,
        before_send=scrub_secrets,
    )
    return True
