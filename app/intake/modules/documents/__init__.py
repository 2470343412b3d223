"""
Client document intake.

- Clients upload supporting files (EIN letter, licenses, bank statements, ...)
- Administrators review each file: PENDING -> APPROVED | REJECTED (reason required)
- Every upload, review, download and deletion is written to the audit trail
"""
