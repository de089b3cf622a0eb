"""Point every suite at a throwaway SQLite file before the app is imported."""
from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path


TMP = Path(__file__).resolve().parent / ".tmp_logistics"
shutil.rmtree(TMP, ignore_errors=True)
TMP.mkdir(parents=True, exist_ok=True)
os.environ["LOGISTICS_DB_PATH"] = str(TMP / "logistics.db")
os.environ["SEED_DEFAULT_CATALOG"] = "false"
os.environ["AUTH_ENABLED"] = "false"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_CHAT_ID"] = ""
os.environ["PRICE_TIE_BREAK"] = "cheapest"

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
