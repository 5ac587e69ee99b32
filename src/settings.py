from pydantic_settings import BaseSettings
from typing import List, Optional
from pathlib import Path

# Current directory (where this file is located)
curr_dir = Path(__file__).parent if "__file__" in globals() else Path.cwd()


class Settings(BaseSettings):
    """
    Centralized application configuration.
    Values are loaded automatically from environment variables or `.env` file.
    """

    # --- Server Settings ---
    host: str = "0.0.0.0"                 # Default host
    port: int = 3001                      # Default port
    debug: bool = False                   # Enable uvicorn reload
    log_level: str = "INFO"

    # --- Database Settings ---
    sqlite_url: str = "sqlite:///./browser_runs.db"  # Run history DB URL

    # --- CORS (Cross-Origin Resource Sharing) ---
    allow_origins: List[str] = [
        "http://localhost:5173",          # Frontend
        "http://localhost:3001",          # Backend
    ]

    # --- Browser Session ---
    headless: bool = False                # Show the browser window by default
    viewport_width: int = 1280
    viewport_height: int = 720
    auto_init_browser: bool = True        # Launch the browser on startup

    # --- Execution / Streaming (milliseconds) ---
    screenshot_interval_ms: int = 3000
    settle_delay_ms: int = 500
    goto_timeout_ms: int = 30000
    selector_timeout_ms: int = 10000
    type_delay_ms: int = 100
    scroll_step_px: int = 500

    # --- OpenAI-compatible planner ---
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    model_name: Optional[str] = None
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2000

    class Config:
        """
        Pydantic Settings configuration:
        - Reads values from `.env` file in current directory
        - UTF-8 encoding for environment variables
        """
        env_file = curr_dir / ".env"
        env_file_encoding = "utf-8"


# Instantiate settings so it can be imported directly
settings = Settings()
