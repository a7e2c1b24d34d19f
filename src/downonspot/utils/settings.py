"""Settings data structures for DownOnSpot.

This module defines all settings as msgspec.Struct classes for type-safe
configuration management. Settings are organized in sections and are
serialized to and from TOML via msgspec.
"""

from pathlib import Path

import msgspec
import platformdirs

from .models import AudioFormat, Quality

# =============================================================================
# Settings Sections
# =============================================================================


class AccountSettings(msgspec.Struct, kw_only=True):
    """Remote service credentials.

    Attributes:
        username: Account user name for the audio session.
        password: Account password for the audio session.
        client_id: Web API client id for metadata lookups.
        client_secret: Web API client secret for metadata lookups.
        market_country_code: Two-letter market code, empty for none.
    """

    username: str = "username"
    password: str = "password"
    client_id: str = "client_id"
    client_secret: str = "secret"
    market_country_code: str = ""


class GeneralSettings(msgspec.Struct, kw_only=True):
    """General application settings.

    Attributes:
        refresh_ui_seconds: Interval between monitor polls.
        search_limit: Maximum number of search candidates shown.
    """

    refresh_ui_seconds: float = 1.0
    search_limit: int = 50


class DownloaderSettings(msgspec.Struct, kw_only=True):
    """Download pipeline settings.

    Attributes:
        concurrent_downloads: Maximum simultaneous track pipelines, at least 1.
        quality: Stream quality tier (normal/high/very_high).
        path: Output directory.
        filename_template: Output file name template.
        separator: String used to join multiple artist names.
        format: Output format (ogg/mp3).
        id3v24: Write ID3 v2.4 tags instead of v2.3 for MP3 output.
        skip_existing: Skip tracks whose output file already exists.
        stream_timeout: Seconds allowed for a single chunk read.
        conversion_timeout: Seconds allowed for conversion and tagging.
        chunk_size: Bytes requested per stream read.
    """

    concurrent_downloads: int = 4
    quality: str = "very_high"
    path: str = "downloads"
    filename_template: str = "%artist% - %title%"
    separator: str = ", "
    format: str = "mp3"
    id3v24: bool = True
    skip_existing: bool = True
    stream_timeout: float = 30.0
    conversion_timeout: float = 300.0
    chunk_size: int = 65536

    def __post_init__(self) -> None:
        # msgspec reports these as ValidationError while decoding
        if self.quality.upper() not in Quality.__members__:
            choices = ", ".join(q.name.lower() for q in Quality)
            raise ValueError(f"quality must be one of {choices}, got {self.quality!r}")
        if self.format.lower() not in {f.value for f in AudioFormat}:
            choices = ", ".join(f.value for f in AudioFormat)
            raise ValueError(f"format must be one of {choices}, got {self.format!r}")
        if self.concurrent_downloads < 1:
            raise ValueError("concurrent_downloads must be at least 1")

    @property
    def quality_tier(self) -> Quality:
        """Parsed quality tier."""
        return Quality[self.quality.upper()]

    @property
    def audio_format(self) -> AudioFormat:
        """Parsed output format."""
        return AudioFormat(self.format.lower())


class AdvancedSettings(msgspec.Struct, kw_only=True):
    """Advanced configuration settings.

    Attributes:
        debug_mode: Enable debug logging.
        session_provider: Entry point name of the audio session plugin.
    """

    debug_mode: bool = False
    session_provider: str = "librespot"


class AppSettings(msgspec.Struct, kw_only=True):
    """Complete application settings."""

    account: AccountSettings = msgspec.field(default_factory=AccountSettings)
    general: GeneralSettings = msgspec.field(default_factory=GeneralSettings)
    downloader: DownloaderSettings = msgspec.field(
        default_factory=DownloaderSettings
    )
    advanced: AdvancedSettings = msgspec.field(default_factory=AdvancedSettings)


# =============================================================================
# Settings I/O Utilities
# =============================================================================


def load_settings(path: Path) -> AppSettings:
    """Loads settings from a TOML file.

    Args:
        path: Path to the settings TOML file.

    Returns:
        AppSettings instance.

    Raises:
        FileNotFoundError: If the file does not exist.
        msgspec.ValidationError: If the file does not match the schema.
    """
    return msgspec.toml.decode(path.read_bytes(), type=AppSettings)


def save_settings(path: Path, settings: AppSettings) -> Path:
    """Saves settings to a TOML file.

    Args:
        path: Path to save the settings file.
        settings: AppSettings instance to save.

    Returns:
        The path that was written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(msgspec.toml.encode(settings))
    return path


# Global settings singleton
_app_settings: AppSettings | None = None
_settings_path: Path = (
    Path(platformdirs.user_config_dir("downonspot")) / "settings.toml"
)


class _SettingsProxy:
    """Proxy class for lazy-loading global settings."""

    @property
    def current(self) -> AppSettings:
        """Gets the current settings, loading if needed."""
        global _app_settings
        if _app_settings is None:
            _app_settings = load_settings(_settings_path)
        return _app_settings

    @property
    def account(self) -> AccountSettings:
        """Gets the account section."""
        return self.current.account

    @property
    def general(self) -> GeneralSettings:
        """Gets the general section."""
        return self.current.general

    @property
    def downloader(self) -> DownloaderSettings:
        """Gets the downloader section."""
        return self.current.downloader

    @property
    def advanced(self) -> AdvancedSettings:
        """Gets the advanced section."""
        return self.current.advanced


settings = _SettingsProxy()


def get_settings_path() -> Path:
    """Returns the current settings file path."""
    return _settings_path


def set_settings_path(path: Path) -> None:
    """Sets the settings file path and drops any loaded settings.

    Args:
        path: Path to the settings TOML file.
    """
    global _app_settings, _settings_path
    _settings_path = path
    _app_settings = None

