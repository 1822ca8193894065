from typing import Any, Sequence

from google.oauth2 import service_account
from googleapiclient.discovery import build

from support_bot.logging_config import get_logger

logger = get_logger("google_auth")

DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
SHEETS_READONLY_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"


def load_credentials(
    credentials_file: str, scopes: Sequence[str] = (DRIVE_SCOPE, SHEETS_READONLY_SCOPE)
) -> service_account.Credentials:
    """Service-account credentials; the API client refreshes the token when it expires."""
    credentials = service_account.Credentials.from_service_account_file(credentials_file, scopes=list(scopes))
    logger.info(f"Loaded service account {credentials.service_account_email}")
    return credentials


def build_drive(credentials: service_account.Credentials) -> Any:
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def build_sheets(credentials: service_account.Credentials) -> Any:
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)
