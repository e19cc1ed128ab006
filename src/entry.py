"""Command-line entry point that serves the InvoiceAgent API with uvicorn.

Usage:
    invoiceagent --host 0.0.0.0 --port 3000
"""

import argparse
import os

DEFAULT_PORT = 3000


def parse_serve_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse serve arguments (host, port, reload)."""
    parser = argparse.ArgumentParser(description="InvoiceAgent API server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", DEFAULT_PORT)),
        help="Listen port (defaults to $PORT or 3000)",
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    return parser.parse_args(args)


def main(argv: list[str] | None = None) -> None:
    """Start uvicorn on the FastAPI app."""
    serve_args = parse_serve_args(argv)
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host=serve_args.host,
        port=serve_args.port,
        reload=serve_args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
