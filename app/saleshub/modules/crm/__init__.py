"""
CRM module.

- Customers (leads) with role-based visibility
- Activity timeline, follow-up tasks and stale-lead escalation
- Lead scoring, duplicate detection and merge
"""
