#!/usr/bin/env python3
"""
Database initialization script for the LNURL server.

Creates all tables for the configured DATABASE_URL. SQLite databases are
also created automatically when the app starts.
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from lnurl_server.config import get_config
from lnurl_server.database import init_database


def main():
    """Initialize database and create all tables."""
    print("=" * 60)
    print("LNURL Server Database Initialization")
    print("=" * 60)

    try:
        cfg = get_config()
        db_url = cfg["DATABASE_URL"]
        print(f"\n📊 Database URL: {db_url.split('@')[1] if '@' in db_url else db_url}")

        print("\n🔨 Creating database tables...")
        database = init_database(cfg, create_tables=True)
        print("✅ All tables created successfully")

        print("\n🏥 Checking database health...")
        health = database.check_health()
        print(f"  {health['database']}: {health['status']}")
        database.close()

        if health["connected"]:
            print("\n✅ Database initialization complete!")
            print("\n📝 Next step: start the server with `python wsgi.py`")
            return 0
        print("\n⚠️  Database is not healthy. Check configuration.")
        return 1

    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback

        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
