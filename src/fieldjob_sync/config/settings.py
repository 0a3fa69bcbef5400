"""
設定管理システム - YAML階層設定 + 環境変数オーバーライド + 暗号化秘密情報
"""

import base64
import dataclasses
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from cryptography.fernet import Fernet, InvalidToken

from ..core.models import JobStatus

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "encrypted:"


@dataclass
class GoogleConfig:
    """Google API接続設定"""
    auth_mode: str = "service_account"  # service_account, oauth
    client_email: str = ""
    private_key: str = ""
    service_account_file: str = ""
    credentials_path: str = "config/secrets/google_credentials.json"
    token_path: str = "config/secrets/google_token.json"
    spreadsheet_id: str = ""
    jobs_sheet_name: str = "Jobs"
    provenance_column: str = "auto_detection"


@dataclass
class CalendarsConfig:
    """カレンダーレジストリ設定"""
    team_calendars: Dict[str, str] = field(default_factory=dict)
    # チーム名 -> カレンダーIDを持つ環境変数名（旧チーム名・新チーム名の両方）
    team_calendar_env: Dict[str, str] = field(default_factory=lambda: {
        "ทีม A": "CALENDAR_ID_TEAM_A",
        "ทีม B": "CALENDAR_ID_TEAM_B",
        "นัดคิวใหม่": "CALENDAR_ID_TEAM_A",
        "เสนอราคา": "CALENDAR_ID_TEAM_B",
    })
    personal_calendar_patterns: List[str] = field(default_factory=lambda: [
        "งานส่วนตัว",
        "personal",
        "ส่วนตัว",
        "นัดหมายส่วนตัว",
        "ปฏิทินส่วนตัว",
        "งานส่วนบุคคล",
    ])
    team_repair_rules: List[Dict[str, Any]] = field(default_factory=lambda: [
        {"contains": ["???", "A"], "team": "ทีม A"},
        {"contains": ["???", "B"], "team": "ทีม B"},
    ])


@dataclass
class SyncConfig:
    """イベント同期設定"""
    timezone: str = "Asia/Bangkok"
    default_start_time: str = "09:00"
    default_end_time: str = "17:00"
    reminder_minutes: List[int] = field(default_factory=lambda: [60, 15])
    # end_time が 00:00 の場合の修復ポリシー（time_window -> [開始, 終了]）
    time_window_policy: Dict[str, List[str]] = field(default_factory=lambda: {
        "AM": ["09:00", "12:00"],
        "PM": ["13:00", "17:00"],
        "All Day": ["08:00", "18:00"],
    })
    afternoon_start_time: str = "13:00"
    morning_end_time: str = "12:00"
    afternoon_end_time: str = "17:00"
    bulk_delay_seconds: float = 0.1


@dataclass
class DetectionConfig:
    """ドリフト検知設定"""
    completion_status: str = JobStatus.APPOINTMENT_CONFIRMED
    terminal_statuses: List[str] = field(default_factory=lambda: [
        JobStatus.COMPLETED,
        JobStatus.CANCELLED,
        JobStatus.DONE,
        JobStatus.CLOSED,
        JobStatus.APPOINTMENT_CONFIRMED,
    ])
    inter_job_delay_seconds: float = 0.1


@dataclass
class SchedulerConfig:
    """定期実行設定"""
    enabled: bool = True
    fire_time: str = "10:00"
    timezone: str = "Asia/Bangkok"
    task_name: str = "daily_drift_scan"


@dataclass
class RepairConfig:
    """カラム入れ違い修復設定"""
    status_values: List[str] = field(default_factory=lambda: [
        JobStatus.NEW,
        JobStatus.SCHEDULED,
        JobStatus.RESCHEDULED,
        JobStatus.CANCELLED,
        JobStatus.NEED_INFO,
        JobStatus.IN_PROGRESS,
        JobStatus.DONE,
        JobStatus.CLOSED,
        JobStatus.APPOINTMENT_CONFIRMED,
    ])
    zone_values: List[str] = field(default_factory=lambda: [
        "กรุงเทพ",
        "บางนา",
        "ลาดกระบัง",
        "สมุทรปราการ",
        "นนทบุรี",
    ])


@dataclass
class LoggingConfig:
    """ログ設定"""
    level: str = "INFO"
    file_path: Optional[str] = None
    name: str = "fieldjob_sync"
    metrics_enabled: bool = True


@dataclass
class HistoryConfig:
    """実行履歴設定"""
    enabled: bool = True
    database_path: str = "data/run_history.db"


@dataclass
class AppConfig:
    """設定メインクラス"""
    google: GoogleConfig = field(default_factory=GoogleConfig)
    calendars: CalendarsConfig = field(default_factory=CalendarsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    repair: RepairConfig = field(default_factory=RepairConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)

    debug: bool = False
    environment: str = "development"


_SECTION_TYPES = {
    "google": GoogleConfig,
    "calendars": CalendarsConfig,
    "sync": SyncConfig,
    "detection": DetectionConfig,
    "scheduler": SchedulerConfig,
    "repair": RepairConfig,
    "logging": LoggingConfig,
    "history": HistoryConfig,
}


class SecurityManager:
    """暗号化された秘密情報の復号"""

    def __init__(self, encryption_key: Optional[str] = None):
        self.encryption_key = encryption_key or os.getenv("FIELDJOB_ENCRYPTION_KEY")
        self.cipher = Fernet(self.encryption_key.encode()) if self.encryption_key else None

    def encrypt_value(self, value: str) -> str:
        if not self.cipher:
            return value
        encrypted = self.cipher.encrypt(value.encode())
        return ENCRYPTED_PREFIX + base64.urlsafe_b64encode(encrypted).decode()

    def decrypt_value(self, value: str) -> str:
        """`encrypted:` で始まる値のみ復号（鍵がなければそのまま）"""
        if not isinstance(value, str) or not value.startswith(ENCRYPTED_PREFIX):
            return value
        if not self.cipher:
            logger.warning("Encrypted secret found but no encryption key configured")
            return value

        try:
            decoded = base64.urlsafe_b64decode(value[len(ENCRYPTED_PREFIX):].encode())
            return self.cipher.decrypt(decoded).decode()
        except (InvalidToken, ValueError) as e:
            logger.error(f"Decryption failed: {e}")
            return value


class ConfigManager:
    """設定管理メインクラス"""

    SECTION_FILES = ("google", "calendars", "sync", "detection", "scheduler", "repair")

    def __init__(self,
                 config_dir: Union[str, Path] = "config",
                 environ: Optional[Dict[str, str]] = None,
                 security_manager: Optional[SecurityManager] = None):
        self.config_dir = Path(config_dir)
        self.environ = environ if environ is not None else os.environ
        self.security_manager = security_manager or SecurityManager(self.environ.get("FIELDJOB_ENCRYPTION_KEY"))
        self._config_cache: Optional[AppConfig] = None

    def load_config(self, reload: bool = False) -> AppConfig:
        """設定の読み込み"""
        if self._config_cache and not reload:
            return self._config_cache

        # メイン設定ファイル + セクション別ファイル
        merged = self._load_yaml_file(self.config_dir / "main.yaml")
        for section in self.SECTION_FILES:
            section_data = self._load_yaml_file(self.config_dir / f"{section}.yaml")
            if section_data:
                merged[section] = {**(merged.get(section) or {}), **section_data}

        config = self._create_config_object(merged)
        self._apply_env_overrides(config)
        self._decrypt_secrets(config)

        logger.info(
            f"Configuration loaded: environment={config.environment}, "
            f"teams={len(config.calendars.team_calendars)}, timezone={config.sync.timezone}"
        )
        self._config_cache = config
        return config

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """YAMLファイルの読み込み"""
        if not file_path.exists():
            logger.debug(f"Config file not found: {file_path}")
            return {}

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load YAML file: {file_path}: {e}")
            return {}

    def _create_config_object(self, config_dict: Dict[str, Any]) -> AppConfig:
        """設定辞書から設定オブジェクトを作成（未知のキーは無視）"""
        kwargs: Dict[str, Any] = {}
        for section_name, section_type in _SECTION_TYPES.items():
            section_data = config_dict.get(section_name) or {}
            known = {f.name for f in dataclasses.fields(section_type)}
            unknown = set(section_data) - known
            if unknown:
                logger.warning(f"Ignoring unknown config keys in {section_name}: {sorted(unknown)}")
            kwargs[section_name] = section_type(**{k: v for k, v in section_data.items() if k in known})

        for key in ("debug", "environment"):
            if key in config_dict:
                kwargs[key] = config_dict[key]

        return AppConfig(**kwargs)

    def _apply_env_overrides(self, config: AppConfig):
        """環境変数によるオーバーライド"""
        env = self.environ

        simple_overrides = {
            "GOOGLE_CLIENT_EMAIL": (config.google, "client_email"),
            "GOOGLE_PRIVATE_KEY": (config.google, "private_key"),
            "GOOGLE_SERVICE_ACCOUNT_FILE": (config.google, "service_account_file"),
            "SPREADSHEET_ID": (config.google, "spreadsheet_id"),
            "JOBS_SHEET_NAME": (config.google, "jobs_sheet_name"),
            "FIELDJOB_LOG_LEVEL": (config.logging, "level"),
            "FIELDJOB_ENVIRONMENT": (config, "environment"),
        }
        for env_key, (target, attr) in simple_overrides.items():
            value = env.get(env_key)
            if value:
                setattr(target, attr, value)

        timezone = env.get("TIMEZONE")
        if timezone:
            config.sync.timezone = timezone
            config.scheduler.timezone = timezone

        if config.google.private_key:
            # 環境変数では改行がエスケープされている
            config.google.private_key = config.google.private_key.replace("\\n", "\n")

        # チームカレンダー: 明示設定が優先、未設定のチームは環境変数から
        for team, env_key in config.calendars.team_calendar_env.items():
            calendar_id = env.get(env_key)
            if calendar_id and not config.calendars.team_calendars.get(team):
                config.calendars.team_calendars[team] = calendar_id

    def _decrypt_secrets(self, config: AppConfig):
        """暗号化された秘密情報の復号化"""
        for attr in ("client_email", "private_key", "spreadsheet_id"):
            value = getattr(config.google, attr)
            setattr(config.google, attr, self.security_manager.decrypt_value(value))

        config.calendars.team_calendars = {
            team: self.security_manager.decrypt_value(calendar_id)
            for team, calendar_id in config.calendars.team_calendars.items()
        }

    def save_config_template(self):
        """設定ファイルテンプレートの作成"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        template = dataclasses.asdict(AppConfig())
        template["google"]["private_key"] = ""

        file_path = self.config_dir / "main.yaml"
        if file_path.exists():
            logger.info(f"Config template already exists: {file_path}")
            return

        with open(file_path, 'w', encoding='utf-8') as f:
            yaml.dump(template, f, default_flow_style=False, allow_unicode=True)
        logger.info(f"Created config template: {file_path}")


def load_config(config_dir: Union[str, Path] = "config") -> AppConfig:
    """設定の取得"""
    return ConfigManager(config_dir).load_config()
