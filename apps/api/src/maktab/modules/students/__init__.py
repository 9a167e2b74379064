"""
Students Module

Enrolled students awaiting payment or active, and the admin actions on
them: manual fee bypass, cancellation and payment link resend.

Background Jobs (via APScheduler):
- students_report_orphans: Logs pending_payment students left without an
  approved registration
"""
