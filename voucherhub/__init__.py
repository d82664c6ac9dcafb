"""
VoucherHub

Multi-tenant food bank voucher platform: organizations on their own
subdomains, cookie sessions, role-based access, plan limits and
database-enforced tenant isolation.
"""

__version__ = "1.0.0"
