from __future__ import annotations

from flask import Request, Response

CSP_REPORT_PATH = "/security/csp-report"

_NO_STORE_PREFIXES = ("/auth", "/admin")

PERMISSIONS_POLICY = (
    "camera=(), microphone=(), geolocation=(), payment=(), usb=(), magnetometer=(), "
    "gyroscope=(), accelerometer=(), ambient-light-sensor=(), autoplay=(self), "
    "encrypted-media=(self), fullscreen=(self), picture-in-picture=(self)"
)


def build_csp(production: bool) -> str:
    script_src = ["'self'", "'unsafe-inline'", "https://cdnjs.cloudflare.com"]
    img_src = ["'self'", "data:", "https:"]
    if not production:
        script_src.append("'unsafe-eval'")
        img_src.append("http:")

    directives = {
        "default-src": ["'self'"],
        "script-src": script_src,
        "script-src-attr": ["'unsafe-inline'"],
        "style-src": ["'self'", "'unsafe-inline'", "https://cdnjs.cloudflare.com", "https://fonts.googleapis.com"],
        "font-src": ["'self'", "https://cdnjs.cloudflare.com", "https://fonts.gstatic.com", "data:"],
        "img-src": img_src,
        "connect-src": ["'self'"],
        "frame-src": ["'self'"],
        "object-src": ["'none'"],
        "media-src": ["'self'"],
        "frame-ancestors": ["'self'"],
        "base-uri": ["'self'"],
        "form-action": ["'self'"],
        "worker-src": ["'self'"],
        "manifest-src": ["'self'"],
    }
    parts = [f"{name} {' '.join(values)}" for name, values in directives.items()]
    if production:
        parts.append("upgrade-insecure-requests")
    else:
        parts.append(f"report-uri {CSP_REPORT_PATH}")
    return "; ".join(parts)


def apply_security_headers(resp: Response, req: Request, production: bool) -> Response:
    resp.headers["Content-Security-Policy"] = build_csp(production)
    if production:
        resp.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"

    resp.headers["X-Frame-Options"] = "DENY"
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["X-XSS-Protection"] = "1; mode=block"
    resp.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    resp.headers["Permissions-Policy"] = PERMISSIONS_POLICY
    resp.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    resp.headers["Cross-Origin-Resource-Policy"] = "same-origin"
    resp.headers["Origin-Agent-Cluster"] = "?1"
    resp.headers["X-DNS-Prefetch-Control"] = "off"

    # auth/admin pages and anything carrying a CSRF token must not be cached
    if req.path.startswith(_NO_STORE_PREFIXES) or "/csrf" in req.path:
        resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
    return resp
