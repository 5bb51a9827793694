#!/usr/bin/env python3
"""
Server entrypoint - loads .env, validates configuration and runs uvicorn.
"""

import argparse
import sys
from pathlib import Path

# Load environment variables from .env file first
import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def main():
    from context_server.core.config import HOST, PORT, LOG_LEVEL, validate_config

    parser = argparse.ArgumentParser(
        description="Run the context server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
- DB_PATH=./data/context.db
- PING_INTERVAL_SEC=30
- MAX_BATCH_SIZE=100
- REQUIRE_TOKEN_HEADER=false
        """
    )
    parser.add_argument("--host", default=HOST, help="Interface to bind")
    parser.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"Configuration error: {issue}", file=sys.stderr)
        return 1

    import uvicorn
    uvicorn.run(
        "context_server.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=LOG_LEVEL.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
