"""
Application entry point
"""

import os
import uvicorn
from paywall.core.config import settings
from paywall.main import app

if __name__ == "__main__":
    # Hosting platforms set the PORT environment variable
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(
        app,
        host=settings.HOST,
        port=port,
        reload=settings.DEBUG
    )
