"""
Users module (admin-only).

A marketplace user is an auth identity plus a store profile sharing the same id.
- list / detail / create / edit / delete
- username availability + profile search (JSON, used by the product forms)
"""
