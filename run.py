#!/usr/bin/env python3
"""
Rate Resolution Engine API
Simple startup script for the API server
"""

import uvicorn

from rate_engine.core.config import settings

if __name__ == "__main__":
    print(f"Starting {settings.APP_NAME}...")
    print("API Documentation: http://localhost:8000/docs")
    print("Health Check: http://localhost:8000/api/health")
    uvicorn.run("rate_engine.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
