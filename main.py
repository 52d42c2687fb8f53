"""Story Forge — dev launcher for the generation API."""

import argparse
import logging

import uvicorn

from storyforge.config import load_settings


def main():
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Story Forge generation API")
    parser.add_argument("--host", default=settings.host,
                        help=f"Bind address (default: {settings.host})")
    parser.add_argument("--port", type=int, default=settings.port,
                        help=f"Port (default: {settings.port})")
    parser.add_argument("--reload", action="store_true",
                        help="Restart on code changes")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"Starting Story Forge on http://localhost:{args.port} ...")
    uvicorn.run(
        "storyforge.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
