#!/usr/bin/env python3
"""
Quick runner for Bear Court
===========================

Usage:
    python -m bear_court.run
"""

import uvicorn

if __name__ == "__main__":
    print("Starting Bear Court...")
    print("API docs: http://localhost:8000/docs")
    print("Health:   http://localhost:8000/health")
    print()

    uvicorn.run(
        "bear_court.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
