#!/usr/bin/env python3
"""
FinLedger Entry Point

Starts the FastAPI server using FINLEDGER_* settings (port 8091 by default).
"""

import sys

from finledger.api import run_server


if __name__ == "__main__":
    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down FinLedger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
