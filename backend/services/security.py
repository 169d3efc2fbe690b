"""
Security configuration and shared security utilities.
Centralizes environment-driven settings for the verification flow, JWT validation,
rate limiting and outbound email, plus helpers for client IP extraction and security logging.
"""
import ipaddress
import os
import secrets
import string
from typing import List, Optional, Union
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

class SecurityConfig:
    """Centralized security configuration with validation."""

    def __init__(self):
        self.jwt_secret_key = self._get_or_generate_jwt_secret()
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")

        # Verification code policy
        self.verification_code_length = int(os.getenv("VERIFICATION_CODE_LENGTH", "6"))
        self.verification_code_expiry_minutes = int(os.getenv("VERIFICATION_CODE_EXPIRY_MINUTES", "10"))
        self.verification_rate_limit_window_minutes = int(os.getenv("VERIFICATION_RATE_LIMIT_WINDOW_MINUTES", "15"))
        self.verification_rate_limit_max_attempts = int(os.getenv("VERIFICATION_RATE_LIMIT_MAX_ATTEMPTS", "5"))
        self.rate_limit_fail_open = os.getenv("RATE_LIMIT_FAIL_OPEN", "true").lower() == "true"

        # Generic per-client rate limiting
        self.rate_limit_requests_per_minute = int(os.getenv("RATE_LIMIT_REQUESTS_PER_MINUTE", "60"))

        # Outbound email
        self.resend_api_key = os.getenv("RESEND_API_KEY")
        self.email_from = os.getenv("EMAIL_FROM", "CHEATPLACE <onboarding@resend.dev>")
        self.email_timeout_seconds = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))

        # Housekeeping
        self.purge_interval_seconds = int(os.getenv("PURGE_INTERVAL_SECONDS", "300"))

        # Security headers
        self.enable_security_headers = os.getenv("ENABLE_SECURITY_HEADERS", "true").lower() == "true"

        # Peers allowed to set X-Forwarded-For / X-Real-IP (comma separated IPs or CIDRs)
        self.trusted_proxies = self._parse_networks(os.getenv("TRUSTED_PROXIES", ""))

        self._validate_config()

    @property
    def retry_after_seconds(self) -> int:
        """Retry-After hint advertised to rate limited callers."""
        return self.verification_rate_limit_window_minutes * 60

    def _get_or_generate_jwt_secret(self) -> str:
        """
        Get JWT secret from environment or generate a secure one.
        Tokens presented to admin endpoints are signed by the identity platform with this secret.
        """
        secret = os.getenv("JWT_SECRET_KEY")

        if not secret:
            logger.warning("JWT_SECRET_KEY not found in environment. Generating secure random secret.")
            secret = self._generate_secure_secret()

        elif len(secret) < 32:
            logger.error("JWT_SECRET_KEY is too short! Must be at least 32 characters.")
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters long")

        elif secret in ["super-secret-key", "secret", "password", "key"]:
            logger.error("JWT_SECRET_KEY appears to be a default/weak value!")
            raise ValueError("JWT_SECRET_KEY cannot be a default or weak value")

        return secret

    @staticmethod
    def _parse_networks(value: str) -> List[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]]:
        networks = []
        for entry in value.split(","):
            entry = entry.strip()
            if not entry:
                continue
            try:
                networks.append(ipaddress.ip_network(entry, strict=False))
            except ValueError:
                raise ValueError(f"Invalid TRUSTED_PROXIES entry: {entry}")
        return networks

    def _generate_secure_secret(self, length: int = 64) -> str:
        """Generate cryptographically secure secret key."""
        alphabet = string.ascii_letters + string.digits + "!@#$%^&*()_+-="
        return ''.join(secrets.choice(alphabet) for _ in range(length))

    def _validate_config(self):
        """Validate security configuration for production readiness."""
        issues = []

        if self.jwt_algorithm not in ["HS256", "HS384", "HS512"]:
            issues.append(f"Unsupported JWT algorithm: {self.jwt_algorithm}")

        if not 4 <= self.verification_code_length <= 10:
            issues.append(f"Verification code length out of range: {self.verification_code_length}")

        if self.verification_code_expiry_minutes > 30:
            issues.append("Verification code expiry too long (>30 minutes)")

        if self.verification_rate_limit_max_attempts > 10:
            issues.append("Verification rate limit too permissive (>10 attempts/window)")

        if self.rate_limit_fail_open:
            issues.append("Rate limiter fails open on store errors (RATE_LIMIT_FAIL_OPEN=true)")

        if not self.resend_api_key:
            issues.append("RESEND_API_KEY not set, emails will only be logged")

        if issues:
            logger.warning("Security configuration issues detected:")
            for issue in issues:
                logger.warning(f"  - {issue}")

class SecurityUtils:
    """Security utility functions shared by routes and services."""

    @staticmethod
    def is_trusted_proxy(ip: str, trusted_proxies=None) -> bool:
        networks = security_config.trusted_proxies if trusted_proxies is None else trusted_proxies
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(address in network for network in networks)

    @staticmethod
    def get_client_ip(request, trusted_proxies=None) -> str:
        """
        Extract the client IP address.

        Forwarding headers are only honoured when the direct peer is a trusted proxy
        (TRUSTED_PROXIES). X-Forwarded-For is then walked from the right and the first
        address that is not itself a trusted proxy is the client.
        """
        peer = request.client.host if request.client else "unknown"
        if not SecurityUtils.is_trusted_proxy(peer, trusted_proxies):
            return peer

        forwarded_ips = request.headers.get("X-Forwarded-For")
        if forwarded_ips:
            hops = [hop.strip() for hop in forwarded_ips.split(",") if hop.strip()]
            for hop in reversed(hops):
                if not SecurityUtils.is_trusted_proxy(hop, trusted_proxies):
                    return hop
            if hops:
                return hops[0]

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

        return peer

    @staticmethod
    def mask_email(email: str) -> str:
        """Mask the local part of an address for log output."""
        if not email or "@" not in email:
            return "***"
        local, _, domain = email.partition("@")
        return f"{local[:2]}***@{domain}"

    @staticmethod
    def log_security_event(event_type: str, details: dict, user_email: Optional[str] = None,
                          client_ip: Optional[str] = None):
        """Log security events for monitoring and analysis."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "user_email": SecurityUtils.mask_email(user_email) if user_email else None,
            "client_ip": client_ip,
            "details": details
        }

        logger.info(f"SECURITY_EVENT: {log_entry}")

    @staticmethod
    def get_utc_now() -> datetime:
        """Get current UTC datetime."""
        return datetime.now(timezone.utc)

# Global security configuration instance
security_config = SecurityConfig()
