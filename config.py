import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_PORT = 3000
DEFAULT_CONSULTOR_PASSWORD = "1234"

def env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}

@dataclass
class Config:
    data_file: Path = Path("data.json")
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    admin_password: Optional[str] = None
    consultor_password: str = DEFAULT_CONSULTOR_PASSWORD
    secret_key: str = field(default_factory=lambda: secrets.token_hex(32))
    cookie_secure: bool = False
    log_level: str = "INFO"

def load_config() -> Config:
    load_dotenv()
    try:
        port = int(os.getenv("PORT") or DEFAULT_PORT)
    except ValueError:
        port = DEFAULT_PORT
    return Config(
        data_file=Path(os.getenv("DATA_FILE") or "data.json"),
        host=os.getenv("HOST") or "0.0.0.0",
        port=port,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        consultor_password=os.getenv("CONSULTOR_PASSWORD") or DEFAULT_CONSULTOR_PASSWORD,
        secret_key=os.getenv("SECRET_KEY") or secrets.token_hex(32),
        cookie_secure=env_bool("COOKIE_SECURE"),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
