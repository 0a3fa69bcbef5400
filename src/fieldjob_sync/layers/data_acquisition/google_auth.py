"""
Google認証 - サービスアカウント / OAuthトークン
"""

import logging
from pathlib import Path
from typing import Sequence

from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from ...config.settings import GoogleConfig

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = [
    'https://www.googleapis.com/auth/calendar',
    'https://www.googleapis.com/auth/calendar.events',
]
SHEETS_SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets',
]
ALL_SCOPES = SHEETS_SCOPES + CALENDAR_SCOPES


def build_credentials(config: GoogleConfig, scopes: Sequence[str] = ALL_SCOPES):
    """設定に応じた認証情報を生成"""
    if config.auth_mode == "oauth":
        return _oauth_credentials(config, scopes)
    return _service_account_credentials(config, scopes)


def _service_account_credentials(config: GoogleConfig, scopes: Sequence[str]):
    if config.client_email and config.private_key:
        info = {
            "type": "service_account",
            "client_email": config.client_email,
            "private_key": config.private_key,
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        return service_account.Credentials.from_service_account_info(info, scopes=list(scopes))

    if config.service_account_file:
        return service_account.Credentials.from_service_account_file(config.service_account_file, scopes=list(scopes))

    raise ValueError("Google service account authentication requires GOOGLE_CLIENT_EMAIL and GOOGLE_PRIVATE_KEY")


def _oauth_credentials(config: GoogleConfig, scopes: Sequence[str]) -> Credentials:
    """保存済みトークン、期限切れなら更新、なければ新規認証フロー"""
    creds = None
    token_path = Path(config.token_path)

    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), list(scopes))

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        creds.refresh(Request())
        logger.info("Google credentials refreshed")
    else:
        if not Path(config.credentials_path).exists():
            raise FileNotFoundError(f"Google credentials file not found: {config.credentials_path}")
        flow = InstalledAppFlow.from_client_secrets_file(config.credentials_path, list(scopes))
        creds = flow.run_local_server(port=0)
        logger.info("New Google credentials obtained")

    try:
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(creds.to_json(), encoding='utf-8')
        logger.info(f"Credentials saved to {token_path}")
    except OSError as e:
        logger.warning(f"Failed to save credentials: {e}")

    return creds
