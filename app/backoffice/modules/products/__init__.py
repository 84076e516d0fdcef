"""
Products module (admin-only): listings owned by store profiles.
"""
