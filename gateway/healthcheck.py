"""
Health Check Command

Queries the gateway's /health endpoint. Exits 0 when the gateway reports
itself healthy, 1 otherwise. Suitable for container HEALTHCHECK or systemd
watchdog scripts.

Usage:
    modbus-gateway-healthcheck                    # http://127.0.0.1:3000/health
    modbus-gateway-healthcheck --port 8080 --json
"""

import argparse
import asyncio
import json
import sys

import httpx


async def check_health(host: str, port: int, timeout: float = 5.0) -> dict | None:
    """
    Fetch the health document.

    Returns:
        Parsed /health response, or None if the gateway is unreachable
        or answered with a non-200 status
    """
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"http://{host}:{port}/health",
                timeout=timeout,
            )
            if response.status_code == 200:
                return response.json()
    except (httpx.HTTPError, ValueError) as e:
        print(f"Health check failed: {e}", file=sys.stderr)
    return None


def main():
    parser = argparse.ArgumentParser(description="Modbus Gateway health check")
    parser.add_argument("--host", default="127.0.0.1", help="Gateway API host")
    parser.add_argument("--port", type=int, default=3000, help="Gateway API port")
    parser.add_argument("--timeout", type=float, default=5.0, help="Request timeout (s)")
    parser.add_argument("--json", action="store_true", help="Print the full health document")
    args = parser.parse_args()

    health = asyncio.run(check_health(args.host, args.port, args.timeout))
    if health is None:
        print("unreachable")
        sys.exit(1)

    if args.json:
        print(json.dumps(health, indent=2))
    else:
        devices = health.get("devices", {})
        print(
            f"{health.get('status', 'unknown')}: "
            f"{devices.get('connected', 0)}/{devices.get('total', 0)} devices connected"
        )

    sys.exit(0 if health.get("status") == "healthy" else 1)


if __name__ == "__main__":
    main()
