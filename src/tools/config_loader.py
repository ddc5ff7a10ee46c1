"""
Configuration loader for pipeline profiles and environment variables.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

PROFILE_ENV_VAR = "OUTAGE_PROFILE"
DEFAULT_PROFILE = "default"


class ConfigLoader:
    """Load and manage pipeline profiles from YAML files and environment."""

    CONFIG_DIR = Path(__file__).parent.parent.parent / "configs"

    @classmethod
    def available_profiles(cls) -> List[str]:
        return sorted(f.stem for f in cls.CONFIG_DIR.glob("*.yaml"))

    @classmethod
    def load_profile(cls, profile_name: str = DEFAULT_PROFILE) -> Dict[str, Any]:
        """
        Load a pipeline profile.

        Args:
            profile_name: Name of the profile (default, dense-urban, rural)

        Returns:
            Dictionary with configuration values (empty for an empty file)

        Raises:
            FileNotFoundError: If profile doesn't exist
            ValueError: If the file does not hold a mapping
        """
        profile_path = cls.CONFIG_DIR / f"{profile_name}.yaml"

        if not profile_path.exists():
            raise FileNotFoundError(
                f"Profile '{profile_name}' not found. "
                f"Available profiles: {', '.join(cls.available_profiles())}"
            )

        with open(profile_path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Profile '{profile_name}' must contain a mapping, got {type(data).__name__}")

        logger.debug(f"Loaded profile '{profile_name}' from {profile_path}")
        return data

    @classmethod
    def get_profile_from_env(cls) -> Optional[str]:
        """Get profile name from the OUTAGE_PROFILE environment variable."""
        return os.getenv(PROFILE_ENV_VAR)

    @classmethod
    def load_default_or_env_profile(cls) -> Dict[str, Any]:
        """Load the profile named by OUTAGE_PROFILE, or ``default``."""
        profile = cls.get_profile_from_env() or DEFAULT_PROFILE
        return cls.load_profile(profile)


def get_config() -> Dict[str, Any]:
    """Convenience function to get current configuration."""
    return ConfigLoader.load_default_or_env_profile()
