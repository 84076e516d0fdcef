"""
Orders module (admin-only). Orders are placed by buyers on the storefront;
the back-office only lists, inspects and updates them.
"""
