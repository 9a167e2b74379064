"""
Registrations Module

Admin decisions on pending maktab registrations:
1. Approve one registration, or a family's registrations together
2. Reject with a reason
3. Provision enrolled students and roll them back if the decision fails
4. Hand approved families off to payments and notifications

API Endpoints (under /admin/registrations):
- GET /pending - Pending registrations grouped by guardian
- POST /{id}/approve - Approve one registration
- POST /approve-group - Approve sibling registrations all-or-nothing
- POST /{id}/reject - Reject a registration

Consistency:
- Students are created before registrations are marked approved
- Every write has an undo on a compensation stack
- Status writes are conditional on the status read
- Concurrent decisions on a record are serialized with Redis locks
"""
