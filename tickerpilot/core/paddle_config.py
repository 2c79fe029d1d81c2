from tickerpilot.core.config import settings

PADDLE_BASE_URL = (
    "https://api.paddle.com"
    if settings.PADDLE_ENVIRONMENT == "production"
    else "https://sandbox-api.paddle.com"
)

# Header names used by the two webhook generations
SIGNATURE_HEADER = "paddle-signature"
TIMESTAMP_HEADER = "paddle-timestamp"

# Billing API version tags stored on each webhook event
API_VERSION_BILLING = "billing"
API_VERSION_CLASSIC = "classic"
