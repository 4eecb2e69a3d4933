"""
Confirmations Module

Single-use participation codes issued after final selection.

API Endpoints:
- POST /confirmations/confirm - Confirm participation
- POST /confirmations/applicants/{applicant_id}/reissue - New code for a finalist (staff)

Security Features:
- Codes are 192-bit random tokens, stored as SHA-256 hashes
- Expire after 72 hours (configurable)
- Confirmation is a compare-and-set on the code status under the
  applicant's row lock, so it happens exactly once
"""
