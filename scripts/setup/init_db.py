# scripts/setup/init_db.py
"""
Initialize database: creates the visitors table.
Run once before first launch, or after changing the model.
Usage: python scripts/setup/init_db.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from kiosk.database import create_tables, engine
from kiosk.config import settings
from sqlalchemy import inspect, text


def main():
    print("🗄️  Kiosk DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nCheck DATABASE_URL in .env, or start PostgreSQL:")
        print("  sudo systemctl start postgresql")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()
    print("✅ Tables created")

    tables = sorted(inspect(engine).get_table_names())
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    os.makedirs(settings.STORAGE_DIR, exist_ok=True)
    print(f"\n📁 Local storage directory: {os.path.abspath(settings.STORAGE_DIR)}")

    print("\n🎉 Database ready! You can now start the backend:")
    print(f"   uvicorn kiosk.main:app --host {settings.HOST} --port {settings.PORT} --reload")


if __name__ == "__main__":
    main()
