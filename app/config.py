from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings


ROOT = Path(__file__).resolve().parents[1]


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    env: Env = Env.local
    html_dir: Path = ROOT / "assets" / "html"
    assets_dir: Path = ROOT / "assets"
    step_pacing: float = 4.0
    narration_advance: float = 1.5
    max_sessions: int = 100
    log_level: str = "INFO"
    suggestions: list[str] = [
        "15-minute healthy lunch",
        "Chocolate dessert with 3 ingredients",
        "Vegan curry",
    ]
