"""CLI entrypoint for the file storage S3 Gateway."""

import argparse
import logging
import sys

from cheroot.wsgi import Server as WSGIServer

from .api import FileStoreClient
from .auth import TokenManager
from .cache import ReadThroughCache
from .config import Settings
from .errors import FileStoreError
from .gateway import S3Gateway
from .transport import HttpxTransport
from .vfs import FileSystem


def build_filesystem(settings: Settings) -> FileSystem:
    """Authenticate and assemble the filesystem described by `settings`."""
    transport = HttpxTransport(timeout=settings.timeout)
    auth = TokenManager(settings.api_url, transport=transport)
    auth.authenticate(settings.username, settings.password, settings.two_factor_code)

    client = FileStoreClient(settings.api_url, auth, transport=transport)
    cache = ReadThroughCache(settings.cache_dir) if settings.cache_dir else None
    return FileSystem(client, cache=cache, scratch_dir=settings.scratch_dir)


def main():
    parser = argparse.ArgumentParser(description="File storage S3 Gateway")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8081, help="Port to bind (default: 8081)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    try:
        settings = Settings.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Set FILESTORE_API_URL, FILESTORE_USERNAME and FILESTORE_PASSWORD", file=sys.stderr)
        sys.exit(1)

    try:
        fs = build_filesystem(settings)
    except FileStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    app = S3Gateway(fs, metadata_file=settings.metadata_file)
    server = WSGIServer((args.host, args.port), app)

    print(f"File storage S3 Gateway running on http://{args.host}:{args.port}")
    print("Press Ctrl+C to stop")

    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()
        print("\nShutdown complete")


if __name__ == "__main__":
    main()
