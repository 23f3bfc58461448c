#!/usr/bin/env python3
"""
Local development server for the minihog analytics API.
"""

import os
import sys
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

# Add src to Python path
current_dir = Path(__file__).parent
src_dir = current_dir / "src"
sys.path.insert(0, str(src_dir))

# Set local development environment
os.environ.setdefault('ENVIRONMENT', 'development')
# Without Redis, run ingestion inline: APP_ENV=test python dev_server.py

if __name__ == "__main__":
    import uvicorn
    from minihog.config import get_settings

    settings = get_settings()
    print("Starting minihog analytics API")
    print(f"Docs: http://localhost:{settings.api_port}/docs")
    print(f"Health Check: http://localhost:{settings.api_port}/health")
    print(f"Events DB: {settings.events_database_url}")
    print("Press Ctrl+C to stop\n")

    uvicorn.run(
        "minihog.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
