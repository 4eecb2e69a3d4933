"""
Sessions Module

Passwordless applicant login with one-time codes.

API Endpoints:
- POST /auth/otp/request - Send a login code
- POST /auth/otp/verify - Exchange a code for a session token
- POST /auth/logout - Revoke a session token

Security Features:
- Codes are 6 digits from the OS CSPRNG, stored as HMAC-SHA256 hashes
- One active code per identifier, replaced by atomic upsert
- Per-identifier rate limiting via Redis (memory fallback)
- Generic acknowledgement that never reveals registration
- Opaque session tokens stored as SHA-256 hashes, fixed 24 hour lifetime

Background Jobs (via APScheduler):
- sessions_cleanup_expired: Runs hourly, purges stale rows
"""
