"""
ASGI entry point for uvicorn
This module exposes the development backend app for use with uvicorn command line:

    uvicorn asgi:app --app-dir src --port 8000
"""

import logging
from pathlib import Path

from config_loader import load_config, setup_logging
from api.main_api import DevBackendAPI

# Ensure logs directory exists
Path("logs").mkdir(exist_ok=True)

# Load configuration
config = load_config()
setup_logging(config)

logger = logging.getLogger(__name__)

logger.info("Initializing development backend...")

# Create API (which contains the FastAPI app and the synthetic chamber)
api = DevBackendAPI(config)

# Expose the FastAPI app for uvicorn
app = api.app

logger.info("ASGI app ready for uvicorn")
