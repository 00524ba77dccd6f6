#!/usr/bin/env python3
"""imgopt CLI - management utility for the image optimization service."""

import argparse
import sys
from pathlib import Path

from imgopt.settings import get_settings
from imgopt.utils.logger import logger

SETTINGS_TEMPLATE = """# imgopt Configuration File

# Server settings
port = 8000
host = "127.0.0.1"
debug = false

# Hosts allowed for absolute image URLs ("*.example.com", "**.example.com")
domains = []

# Local images are served from this directory
static_root = "./public"

# Loader: default, imgix, cloudinary, akamai or custom
loader = "default"
path_prefix = ""

# Width breakpoints and output formats
device_sizes = [640, 750, 828, 1080, 1200, 1920, 2048, 3840]
image_sizes = [16, 32, 48, 64, 96, 128, 256, 384]
formats = ["image/avif", "image/webp"]

# Cache settings
cache_dir = "./cache"
minimum_cache_ttl = 60
"""


def init_project(path: str) -> None:
    """Initialize a new imgopt project in the specified directory."""
    project_path = Path(path).resolve()

    for directory in (project_path / "public", project_path / "cache"):
        directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created directory: {directory}")

    settings_file = project_path / "settings.toml"
    if not settings_file.exists():
        settings_file.write_text(SETTINGS_TEMPLATE)
        logger.info(f"Created settings file: {settings_file}")

    env_file = project_path / ".env.example"
    env_file.write_text(
        "# Environment variables (optional)\n"
        '# IMGOPT_DOMAINS=\'["images.example.com"]\'\n'
        "# IMGOPT_CACHE_DIR=/var/cache/imgopt\n"
    )
    logger.info(f"Created .env.example: {env_file}")

    logger.info(f"Project initialized at {project_path}")


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the imgopt server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.host or "127.0.0.1"
    port = port or settings.port or 8000

    logger.info(f"Starting imgopt server at http://{host}:{port}")

    uvicorn.run(
        "imgopt.api.app:app",
        host=host,
        port=port,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning",
    )


def evict_cache(expired_only: bool = True) -> int:
    """Sweep the variant cache from the command line.

    Args:
        expired_only: Remove only expired entries (plus the size limit);
            False clears the whole cache

    Returns:
        Number of entries removed
    """
    from imgopt.services.optimizer import CacheStore

    settings = get_settings()
    store = CacheStore(Path(settings.cache_dir), memory_max_entries=0)

    if not expired_only:
        return store.clear()

    removed = store.evict_expired()
    removed += store.evict_by_size(settings.max_cache_size_bytes)
    logger.info(f"Removed {removed} cache entries from {settings.cache_dir}")
    return removed


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="imgopt", description="imgopt - request-time image optimization service"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init command
    init_parser = subparsers.add_parser("init", help="Initialize a new imgopt project")
    init_parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path where to create the project (default: current directory)",
    )

    # run command
    run_parser = subparsers.add_parser("run", help="Run the server")
    run_parser.add_argument(
        "--host", type=str, default=None, help="Host to bind to (default: 127.0.0.1)"
    )
    run_parser.add_argument(
        "--port", type=int, default=None, help="Port to bind to (default: 8000)"
    )

    # evict command
    evict_parser = subparsers.add_parser("evict", help="Remove expired or all cache entries")
    evict_parser.add_argument(
        "--all", action="store_true", help="Remove every entry, not only expired ones"
    )

    args = parser.parse_args()

    if args.command == "init":
        init_project(args.path)
    elif args.command == "run":
        run_server(args.host, args.port)
    elif args.command == "evict":
        evict_cache(expired_only=not args.all)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
