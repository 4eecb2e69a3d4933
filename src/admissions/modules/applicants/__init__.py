"""
Applicants Module

Applicant registration and self-service profile.

API Endpoints:
- POST /applicants/register - Register a new applicant
- GET /applicants/me - Signed-in applicant's profile
- POST /applicants/me/withdraw - Withdraw from the competition
"""
