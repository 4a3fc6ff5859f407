"""
Create the authentication tables.
Run once before first use: python scripts/init_db.py

Uses DATABASE_URL (or the POSTGRES_* settings) from the environment or .env;
falls back to a local SQLite file.
"""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import text
from authcore.config import settings
from authcore.core.database import engine
from authcore.main import startup


def main():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print(f"Cannot connect to database {engine.url.render_as_string(hide_password=True)}: {e}")
        sys.exit(1)

    startup()
    print(f"Tables ready for {settings.APP_NAME}.")


if __name__ == "__main__":
    main()
