"""
Database initialization script.
This script creates all database tables.
Run this as: python init_db.py
"""

import logging
import sys

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("db-init")

from friendgraph.core.config import settings
from friendgraph.db.init_db import create_all_tables

if __name__ == "__main__":
    logger.info("Starting database initialization")
    # Don't log credentials embedded in the URL
    logger.info(f"Database backend: {settings.DATABASE_URL.split(':', 1)[0]}")
    if create_all_tables():
        logger.info("Database initialization completed successfully")
    else:
        logger.error("Database initialization failed")
        sys.exit(1)
