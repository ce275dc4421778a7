import logging
from pathlib import Path
from typing import Any, Dict

import task_runner.settings as default_settings

log = logging.getLogger(__name__)


class MergedSettings:
    """
    Merges default settings with keyword overrides.

    This class provides a unified, attribute-based access point for all
    service configuration. It follows a clear precedence:
    1. Base values from `settings.py`.
    2. Overrides from `.env` / the environment (handled by `python-dotenv` in settings.py).
    3. Keyword overrides passed to the constructor (entry point and tests).
    """

    def __init__(self, **overrides: Any) -> None:
        """Initializes the settings object by loading defaults and overrides."""
        self._load_defaults()
        self._apply_overrides(overrides)

    def _load_defaults(self) -> None:
        """
        Loads all uppercase attributes from the settings.py module as defaults.
        """
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))

    def _apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """
        Applies the given overrides on top of the defaults.

        Unknown keys are ignored so that a typo never silently creates a new setting.

        :param overrides: A dictionary of setting names to values.
        """
        for key, value in overrides.items():
            if not hasattr(self, key):
                log.warning(f"Override setting '{key}' not found in default settings. Ignoring.")
                continue

            # Coerce path strings back to Path objects if necessary
            original_value = getattr(self, key)
            if isinstance(original_value, Path) and not isinstance(value, Path):
                value = Path(value)
            setattr(self, key, value)
            log.debug(f"Overridden setting: {key} = {value}")

    def as_dict(self) -> Dict[str, Any]:
        """Returns every setting as a plain dictionary."""
        return {key: value for key, value in vars(self).items() if key.isupper()}


# Create a singleton instance to be imported by other modules
effective_settings = MergedSettings()
