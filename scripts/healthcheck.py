#!/usr/bin/env python3
"""Site Manager Health Check — verify a deployment is operational.

Checks:
  1. Backend API responds on /api/v1/health (HTTP 200, status "healthy")
  2. Protected endpoints reject anonymous callers (dashboard stats → 401)
  3. Retired /api/v1/messages routes answer 410 Gone
  4. SMTP status via /api/v1/mail/status (needs --token)
  5. ffprobe is installed on this machine (media metadata extraction)
  6. SSL certificate valid and not expiring soon

Usage:
    python scripts/healthcheck.py --url http://localhost:8000 --skip-ssl
    python scripts/healthcheck.py --url https://chantiers.example.fr --token <jwt>
    python scripts/healthcheck.py --json                   # machine-readable output

Exit codes:
    0 = all checks passed
    1 = one or more checks failed
"""

from __future__ import annotations

import argparse
import json
import socket
import ssl
import subprocess
import sys
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

import httpx

DEFAULT_URL = "http://localhost:8000"


# ══════════════════════════════════════════════════════════════════════
# Check result model
# ══════════════════════════════════════════════════════════════════════

class CheckResult:
    """Single health check result."""

    def __init__(self, name: str, passed: bool, message: str,
                 detail: str = "", severity: str = "error"):
        self.name = name
        self.passed = passed
        self.message = message
        self.detail = detail
        self.severity = severity  # "error", "warning", "info"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "detail": self.detail,
            "severity": self.severity,
        }

    def __str__(self) -> str:
        icon = "✅" if self.passed else ("⚠️" if self.severity == "warning" else "❌")
        s = f"{icon} {self.name}: {self.message}"
        if self.detail:
            s += f"\n     {self.detail}"
        return s


# ══════════════════════════════════════════════════════════════════════
# Health checks
# ══════════════════════════════════════════════════════════════════════

def check_backend_health(client: httpx.Client) -> CheckResult:
    """Check that /api/v1/health responds correctly."""
    try:
        resp = client.get("/api/v1/health")
    except httpx.ConnectError as e:
        return CheckResult("Backend API", False, "Cannot connect to backend", str(e))
    except httpx.HTTPError as e:
        return CheckResult(
            "Backend API", False, f"Health check failed: {type(e).__name__}", str(e),
        )

    if resp.status_code != 200:
        return CheckResult(
            "Backend API", False,
            f"HTTP {resp.status_code} (expected 200)",
            f"URL: {resp.url}",
        )

    body = resp.json()
    if body.get("status") != "healthy":
        return CheckResult(
            "Backend API", False,
            f"Status: {body.get('status', 'missing')} (expected 'healthy')",
            f"Response: {json.dumps(body)}",
        )
    return CheckResult(
        "Backend API", True,
        f"Healthy (v{body.get('version', 'unknown')}, {body.get('environment', 'unknown')})",
        f"URL: {resp.url}",
    )


def check_auth_protection(client: httpx.Client) -> CheckResult:
    """Anonymous calls to a protected endpoint must be rejected."""
    try:
        resp = client.get("/api/v1/dashboard/stats")
    except httpx.HTTPError as e:
        return CheckResult("Auth Protection", False, "Request failed", str(e))

    if resp.status_code in (401, 403):
        return CheckResult("Auth Protection", True, f"Anonymous request rejected ({resp.status_code})")
    return CheckResult(
        "Auth Protection", False,
        f"Dashboard stats returned {resp.status_code} without a token",
        "Expected 401; check the auth dependency wiring.",
    )


def check_legacy_routes(client: httpx.Client) -> CheckResult:
    """Retired messages API must answer 410 with a replacement pointer."""
    try:
        resp = client.get("/api/v1/messages")
    except httpx.HTTPError as e:
        return CheckResult("Legacy Routes", False, "Request failed", str(e))

    if resp.status_code == 410:
        replacement = resp.json().get("replacement", "")
        return CheckResult("Legacy Routes", True, "Messages API reports 410 Gone", f"Replacement: {replacement}")
    return CheckResult(
        "Legacy Routes", False,
        f"/api/v1/messages returned {resp.status_code} (expected 410)",
        severity="warning",
    )


def check_mail_status(client: httpx.Client, token: Optional[str]) -> CheckResult:
    """Ask the API whether SMTP is configured and reachable."""
    if not token:
        return CheckResult(
            "SMTP", True, "Skipped (no --token given)", severity="info",
        )
    try:
        resp = client.get(
            "/api/v1/mail/status",
            params={"verify": "true"},
            headers={"Authorization": f"Bearer {token}"},
        )
    except httpx.HTTPError as e:
        return CheckResult("SMTP", False, "Request failed", str(e))

    if resp.status_code != 200:
        return CheckResult("SMTP", False, f"Mail status returned {resp.status_code}")

    body = resp.json()
    if not body.get("configured"):
        return CheckResult(
            "SMTP", False,
            "SMTP credentials not configured",
            "Set EMAIL_USER / EMAIL_PASSWORD; OTP emails will not be delivered.",
            severity="warning",
        )
    if body.get("verified") is False:
        return CheckResult(
            "SMTP", False,
            f"SMTP login failed on {body.get('smtp_host')}:{body.get('smtp_port')}",
            body.get("error") or "",
        )
    return CheckResult("SMTP", True, f"Verified ({body.get('smtp_host')}, sender {body.get('sender')})")


def check_ffprobe(ffprobe_path: str = "ffprobe") -> CheckResult:
    """ffprobe is optional; without it video/audio uploads carry no metadata."""
    try:
        result = subprocess.run(
            [ffprobe_path, "-version"],
            capture_output=True, text=True, timeout=15,
        )
    except FileNotFoundError:
        return CheckResult(
            "ffprobe", True,
            "Not installed (video/audio metadata disabled)",
            "Install ffmpeg on the API host to enable it.",
            severity="warning",
        )
    except subprocess.TimeoutExpired:
        return CheckResult("ffprobe", False, "ffprobe -version timed out", severity="warning")

    if result.returncode != 0:
        return CheckResult("ffprobe", False, "ffprobe exited with an error", result.stderr[:300])
    first_line = result.stdout.splitlines()[0] if result.stdout else "unknown version"
    return CheckResult("ffprobe", True, "Available", first_line)


def check_ssl_certificate(hostname: str, port: int = 443,
                          warn_days: int = 14) -> CheckResult:
    """Check SSL certificate validity and expiry."""
    try:
        ctx = ssl.create_default_context()
        with socket.create_connection((hostname, port), timeout=10) as sock:
            with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
                cert = ssock.getpeercert()
    except ssl.SSLCertVerificationError as e:
        return CheckResult("SSL Certificate", False, "Certificate verification failed", str(e))
    except (socket.timeout, ConnectionRefusedError) as e:
        return CheckResult(
            "SSL Certificate", False, f"Cannot reach {hostname}:{port}", str(e),
        )

    not_after = cert.get("notAfter", "")
    if not not_after:
        return CheckResult("SSL Certificate", False, "Cannot read certificate expiry")

    # Format: 'Mar 15 12:00:00 2025 GMT'
    expiry = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
    days_left = (expiry - datetime.now(timezone.utc)).days
    issuer = dict(x[0] for x in cert.get("issuer", []))
    detail = f"Issuer: {issuer.get('commonName', 'unknown')}, Expires: {not_after}"

    if days_left < 0:
        return CheckResult("SSL Certificate", False, f"EXPIRED {abs(days_left)} days ago!", detail)
    if days_left < warn_days:
        return CheckResult(
            "SSL Certificate", True, f"Expiring soon: {days_left} days left", detail,
            severity="warning",
        )
    return CheckResult("SSL Certificate", True, f"Valid ({days_left} days until expiry)", detail)


# ══════════════════════════════════════════════════════════════════════
# Runner
# ══════════════════════════════════════════════════════════════════════

def run_healthcheck(
    url: str = DEFAULT_URL,
    token: Optional[str] = None,
    skip_ssl: bool = False,
    timeout: int = 10,
) -> list[CheckResult]:
    """Run all health checks and return results."""
    parsed = urlparse(url)
    results: list[CheckResult] = []

    with httpx.Client(base_url=url.rstrip("/"), timeout=timeout) as client:
        results.append(check_backend_health(client))
        results.append(check_auth_protection(client))
        results.append(check_legacy_routes(client))
        results.append(check_mail_status(client, token))

    results.append(check_ffprobe())

    if parsed.scheme == "https" and not skip_ssl:
        results.append(check_ssl_certificate(parsed.hostname))
    else:
        results.append(CheckResult("SSL Certificate", True, "Skipped", severity="info"))

    return results


def main():
    parser = argparse.ArgumentParser(description="Site Manager Health Check")
    parser.add_argument("--url", type=str, default=DEFAULT_URL,
                        help=f"Base URL to check (default: {DEFAULT_URL})")
    parser.add_argument("--token", type=str, default=None,
                        help="Bearer token used for authenticated checks")
    parser.add_argument("--skip-ssl", action="store_true",
                        help="Skip SSL certificate check")
    parser.add_argument("--json", dest="output_json", action="store_true",
                        help="Output results as JSON")
    parser.add_argument("--timeout", type=int, default=10,
                        help="HTTP timeout in seconds (default: 10)")
    args = parser.parse_args()

    results = run_healthcheck(
        url=args.url, token=args.token, skip_ssl=args.skip_ssl, timeout=args.timeout,
    )
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    if args.output_json:
        print(json.dumps({
            "timestamp": now,
            "target": args.url,
            "checks": [r.to_dict() for r in results],
            "all_passed": all(r.passed for r in results),
        }, indent=2))
    else:
        print(f"{'=' * 60}\n  SITE MANAGER — HEALTH CHECK\n  Target : {args.url}\n  Time   : {now}\n{'=' * 60}\n")
        for result in results:
            print(result)
            print()
        failed = sum(1 for r in results if not r.passed)
        print(f"{'=' * 60}")
        if failed == 0:
            print(f"  ✅ ALL {len(results)} CHECKS PASSED")
        else:
            print(f"  ❌ {failed}/{len(results)} CHECKS FAILED")
        print(f"{'=' * 60}")

    sys.exit(1 if any(not r.passed for r in results) else 0)


if __name__ == "__main__":
    main()
