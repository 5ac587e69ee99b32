import os
import sys
import tempfile
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

# Settings are read at import time, so the test environment must be in place first.
_DB_DIR = tempfile.mkdtemp(prefix="browser-runs-")
os.environ["SQLITE_URL"] = f"sqlite:///{_DB_DIR}/runs.db"
os.environ["AUTO_INIT_BROWSER"] = "false"
os.environ["SETTLE_DELAY_MS"] = "0"
os.environ["OPENAI_API_KEY"] = ""
