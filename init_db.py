#!/usr/bin/env python3
"""
Initialize the tender monitor database.
Run this script to create the database and tables.
"""

import sys
import argparse

from config import ConfigManager
from tender_monitor.data.database_factory import DatabaseFactory
from tender_monitor.utils.errors import TenderMonitorError
from tender_monitor.utils.logging import setup_logging


def main():
    """Initialize the configured database."""
    parser = argparse.ArgumentParser(description="Create the tender monitor tables")
    parser.add_argument('--config', '-c', default='config.json', help='Path to configuration file')
    args = parser.parse_args()

    setup_logging(
        log_level="INFO",
        log_file="logs/database_init.log",
        retention_days=7  # 7天日志保留
    )

    try:
        config = ConfigManager(args.config).load_config()
        print(f"Initializing {config.database.db_type} database for Tender Monitor...")

        db_manager = DatabaseFactory.create_database_manager(config.database)
        db_manager.initialize()

        if not db_manager.health_check():
            print("❌ Database health check failed!")
            sys.exit(1)

        print("✅ Database initialized successfully!")
        stats = db_manager.get_connection_stats()
        for key, value in stats.items():
            print(f"📊 {key}: {value}")
        db_manager.close()

    except TenderMonitorError as e:
        print(f"❌ Failed to initialize database: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
