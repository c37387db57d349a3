from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class StudySettings(BaseSettings):
    """Study settings, read from ``AISTUDY_*`` environment variables or ``.env``"""

    model_config = SettingsConfigDict(
        env_prefix="AISTUDY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Data Settings
    data_root: str = "data"  # participants.xlsx / trials.xlsx go to <data_root>/study
    dataset_dir: str = "dataset"
    predictions_csv: str = "predictions.csv"
    image_subdir: str = "no_map"
    heatmap_subdir: str = "map"
    box_units: str = "normalized"  # "normalized" or "pixel"

    # Session Settings
    debug_mode: bool = False
    trials_per_session: int = 50
    debug_trials_per_session: int = 5

    # Logging Settings
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_rotation_interval: str = "midnight"
    log_rotation_count: int = 30
    log_max_bytes: int = 10 * 1024 * 1024  # 10MB for error log
    log_backup_count: int = 5

    @property
    def total_trials(self) -> int:
        """Trials per phase; shortened in debug mode"""
        return self.debug_trials_per_session if self.debug_mode else self.trials_per_session

    @property
    def predictions_path(self) -> Path:
        return Path(self.dataset_dir) / self.predictions_csv

    @property
    def image_dir(self) -> Path:
        return Path(self.dataset_dir) / self.image_subdir

    @property
    def heatmap_dir(self) -> Path:
        return Path(self.dataset_dir) / self.heatmap_subdir


settings = StudySettings()
