import os
from pathlib import Path

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib  # pyright: ignore[reportMissingImports]


# Settings key constants
SETTING_INDEX_DIRECTORY = 'index.directory'
SETTING_HASH_ALGORITHM = 'index.hash_algorithm'
SETTING_CHUNK_SIZE = 'index.chunk_size'
SETTING_FOLLOW_SYMLINKS = 'walk.follow_symlinks'
SETTING_LOG_PATH = 'logging.path'
SETTING_LOG_LEVEL = 'logging.level'

CONFIG_ENVIRONMENT_VARIABLE = 'DUPINDEX_CONFIG'


class SettingsError(ValueError):
    pass


class IndexSettings:
    """Settings manager for scan configuration.

    Provides a read-only key-value interface to access settings from a TOML file.
    This class is agnostic to the schema and usage of settings - it simply loads the TOML
    file and provides access to the raw data structure. Consumers of this class are
    responsible for interpreting and validating the settings according to their needs.

    Example:
        settings = IndexSettings(Path('dupindex.toml'))
        hash_algorithm = settings.get(SETTING_HASH_ALGORITHM, 'md5')
        chunk_size = settings.get(SETTING_CHUNK_SIZE, 1_000_000)
    """

    def __init__(self, settings_file: Path | None = None):
        """Initialize settings from TOML file.

        Without a settings file an empty settings dictionary is used, and all get() calls
        return their defaults.

        Args:
            settings_file: Path to a TOML file, or None for no settings

        Raises:
            SettingsError: The file does not exist or is not valid TOML
        """
        self._settings_file = settings_file
        self._settings = {}

        if settings_file is not None:
            try:
                with open(settings_file, 'rb') as f:
                    self._settings = tomllib.load(f)
            except OSError as e:
                raise SettingsError(f"Unable to read settings file {settings_file}: {e}") from e
            except tomllib.TOMLDecodeError as e:
                raise SettingsError(f"Invalid settings file {settings_file}: {e}") from e

    @classmethod
    def from_environment(cls, settings_file: str | os.PathLike | None = None) -> 'IndexSettings':
        """Load settings from settings_file, falling back to the DUPINDEX_CONFIG variable."""
        if settings_file is None:
            settings_file = os.environ.get(CONFIG_ENVIRONMENT_VARIABLE) or None
        return cls(Path(settings_file) if settings_file is not None else None)

    @property
    def settings_file(self) -> Path | None:
        return self._settings_file

    def get(self, key: str, default=None):
        """Get a setting value by key with optional default.

        Supports both simple keys and dot notation for accessing nested keys (e.g.,
        'index.hash_algorithm' accesses settings['index']['hash_algorithm']). Returns the
        default value if the key path does not exist or if any intermediate value is not
        a dictionary.

        Args:
            key: Setting key path using dot notation for nested keys
            default: Default value to return if key not found

        Returns:
            Setting value at the specified key path, or default if not found

        Examples:
            >>> settings.get(SETTING_HASH_ALGORITHM, 'md5')
            'murmur3'
            >>> settings.get('nonexistent.key', 'fallback')
            'fallback'
        """
        keys = key.split('.')
        value = self._settings

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_typed(self, key: str, expected_type: type, default=None):
        """Get a setting value and check its type.

        Raises:
            SettingsError: The value is present but not of expected_type
        """
        value = self.get(key, default)
        if value is None:
            return None
        # bool is an int subclass, don't accept it for numeric settings
        if not isinstance(value, expected_type) or (expected_type is int and isinstance(value, bool)):
            raise SettingsError(
                f"Setting {key} must be of type {expected_type.__name__}, got {type(value).__name__}")
        return value
