"""
Merchant application drafting and review.

- The client edits a large multi-section record that autosaves partial updates
- DRAFT -> SUBMITTED -> UNDER_REVIEW -> APPROVED | REJECTED
- Partial saves never erase previously completed sections (see app.intake.sanitizer)
"""
