"""CLI helper for running the image proxy under uvicorn."""

from __future__ import annotations

import argparse

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the edgepix image proxy")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8080, help="Port to listen on")
    parser.add_argument("--workers", type=int, default=1, help="Number of worker processes")
    parser.add_argument("--proxy-headers", action="store_true", help="Trust X-Forwarded-* headers")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    uvicorn.run(
        "edgepix.image_proxy.main:app",
        host=args.host,
        port=args.port,
        workers=args.workers,
        proxy_headers=args.proxy_headers,
        forwarded_allow_ips="*" if args.proxy_headers else None,
        log_config=None,
    )


if __name__ == "__main__":
    main()
