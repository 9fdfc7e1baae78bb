"""
Fine-grained permission governance.

Admins ask for named capabilities, super admins review the requests or grant
and revoke capabilities directly, and `is_allowed` is the gate every
privileged view consults.
"""
