"""Built-in website checks.

Supports: HTTP status, response time, security headers, TLS certificate
expiry, DNS resolution. Each check sizes its network timeout from the
context deadline and returns a CheckOutcome; transport failures surface as
``error`` outcomes (retryable) rather than exceptions.
"""

from __future__ import annotations

import socket
import ssl
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from .base import CheckContext, CheckOutcome, CheckPlugin
from .registry import CheckRegistry


def _fetch(url: str, context: CheckContext, method: str = "GET") -> tuple[httpx.Response, float]:
    """Perform one request bounded by the context deadline. Returns (response, latency_ms)."""
    context.checkpoint()
    timeout = max(0.1, context.remaining(default=10.0))
    t0 = time.perf_counter()
    with httpx.Client(timeout=timeout, follow_redirects=False, verify=True) as client:
        resp = client.request(method, url)
    return resp, round((time.perf_counter() - t0) * 1000, 1)


class HttpStatusCheck(CheckPlugin):
    name = "http_status_check"
    description = "Checks HTTP status code and basic availability"
    category = "availability"

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        try:
            resp, latency = _fetch(target.url, context, context.options.get("method", "GET"))
        except httpx.TimeoutException:
            return self.error("HTTP request timed out")
        except httpx.HTTPError as e:
            return self.failed(f"HTTP request failed: {type(e).__name__}: {e}")

        data = {"status_code": resp.status_code, "latency_ms": latency, "headers_count": len(resp.headers)}
        if 200 <= resp.status_code < 300:
            return self.passed(f"HTTP status OK ({resp.status_code})", data)
        if 300 <= resp.status_code < 400:
            return self.warning(f"HTTP redirect ({resp.status_code})", data)
        return self.failed(f"HTTP error status ({resp.status_code})", data)


class ResponseTimeCheck(CheckPlugin):
    name = "response_time_check"
    description = "Checks website response time performance"
    category = "performance"

    def __init__(self, warning_threshold: float = 2.0, critical_threshold: float = 5.0, samples: int = 3) -> None:
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.samples = samples

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        times: list[float] = []
        for _ in range(self.samples):
            try:
                _, latency = _fetch(target.url, context)
            except httpx.HTTPError:
                continue
            times.append(latency / 1000)

        if not times:
            return self.error("All response time measurements failed")

        avg = sum(times) / len(times)
        data = {
            "average_time": round(avg, 3),
            "min_time": round(min(times), 3),
            "max_time": round(max(times), 3),
            "samples": len(times),
        }
        if avg <= self.warning_threshold:
            return self.passed(f"Response time is good ({avg:.2f}s avg)", data)
        if avg <= self.critical_threshold:
            return self.warning(f"Response time is slow ({avg:.2f}s avg)", data)
        return self.failed(f"Response time is critical ({avg:.2f}s avg)", data)


REQUIRED_HEADERS = (
    "x-frame-options",
    "x-content-type-options",
    "strict-transport-security",
    "content-security-policy",
)
RECOMMENDED_HEADERS = ("referrer-policy", "permissions-policy")


def _header_issues(header: str, value: str) -> list[str]:
    issues = []
    if header == "x-frame-options" and value.upper() not in ("DENY", "SAMEORIGIN"):
        issues.append("Should be DENY or SAMEORIGIN")
    elif header == "x-content-type-options" and value.lower() != "nosniff":
        issues.append('Should be "nosniff"')
    elif header == "strict-transport-security" and "max-age=" not in value:
        issues.append("Missing max-age directive")
    return issues


class SecurityHeadersCheck(CheckPlugin):
    name = "security_headers_check"
    description = "Checks for presence and configuration of security headers"
    category = "security"

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        try:
            resp, _ = _fetch(target.url, context)
        except httpx.HTTPError as e:
            return self.error(f"Could not fetch headers from target: {e}")

        headers = {k.lower(): v for k, v in resp.headers.items()}
        score = 100
        missing: list[str] = []
        misconfigured: dict[str, list[str]] = {}

        for header in REQUIRED_HEADERS:
            if header not in headers:
                missing.append(header)
                score -= 20
                continue
            issues = _header_issues(header, headers[header])
            if issues:
                misconfigured[header] = issues
                score -= 15
        score -= 5 * sum(1 for h in RECOMMENDED_HEADERS if h not in headers)

        data = {"missing_headers": missing, "misconfigured_headers": misconfigured}
        score = max(0, score)
        if missing or misconfigured:
            parts = []
            if missing:
                parts.append("Missing headers: " + ", ".join(missing))
            if misconfigured:
                parts.append("Misconfigured headers: " + ", ".join(misconfigured))
            return self.failed("; ".join(parts), data, score=score)
        return self.passed("All security headers are properly configured", data, score=score)


class SslCertificateCheck(CheckPlugin):
    name = "ssl_certificate_check"
    description = "Checks TLS certificate validity and expiry"
    category = "security"

    def __init__(self, warn_days_before: int = 30, port: int = 443) -> None:
        self.warn_days_before = warn_days_before
        self.port = port

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        hostname = target.hostname
        context.checkpoint()
        try:
            ctx = ssl.create_default_context()
            with socket.create_connection((hostname, self.port), timeout=context.remaining(10.0)) as sock:
                with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
                    cert = ssock.getpeercert()
        except ssl.SSLCertVerificationError as e:
            return self.failed(f"Certificate verification failed: {e.verify_message}")
        except (OSError, ssl.SSLError) as e:
            return self.error(f"TLS error: {type(e).__name__}: {e}")

        if not cert:
            return self.failed("No certificate returned")

        not_after = cert.get("notAfter", "")
        expiry = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
        days_left = (expiry - datetime.now(timezone.utc)).days
        data = {"days_left": days_left, "expiry": expiry.isoformat()}

        if days_left < 0:
            return self.failed(f"Certificate EXPIRED {-days_left} days ago", data)
        if days_left < self.warn_days_before:
            return self.warning(f"Certificate expires in {days_left} days (warn < {self.warn_days_before})", data)
        return self.passed(f"Certificate valid, expires in {days_left} days", data)


class DnsResolveCheck(CheckPlugin):
    name = "dns_resolve_check"
    description = "Checks that the target hostname resolves"
    category = "availability"

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        context.checkpoint()
        try:
            addrs = socket.getaddrinfo(target.hostname, None)
        except socket.gaierror as e:
            return self.failed(f"DNS resolution failed: {e}")

        ips = sorted({a[4][0] for a in addrs})
        return self.passed(f"Resolved to {', '.join(ips[:3])}", {"ips": ips})


def builtin_checks() -> list[CheckPlugin]:
    return [
        HttpStatusCheck(),
        ResponseTimeCheck(),
        SecurityHeadersCheck(),
        SslCertificateCheck(),
        DnsResolveCheck(),
    ]


def default_registry() -> CheckRegistry:
    """A fresh registry pre-loaded with the built-in checks."""
    return CheckRegistry(builtin_checks())
