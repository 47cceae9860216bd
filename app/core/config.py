import os
from pydantic import BaseModel
from typing import Optional

class Settings(BaseModel):
    """for reading environment-driven configuration.

    Values have sensible defaults for running the service locally.
    """
    upload_path: str = os.getenv("UPLOAD_PATH", "./uploads/")
    host: str = os.getenv("HOST", "localhost")
    port: int = int(os.getenv("PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    fetch_timeout: Optional[float] = (
        float(os.environ["FETCH_TIMEOUT"]) if os.getenv("FETCH_TIMEOUT") else None
    )

settings = Settings()
