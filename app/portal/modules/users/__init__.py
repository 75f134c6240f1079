"""
User administration: listing, detail, profile, create/edit and soft delete of accounts.

Routes live in `admin.py`, request handling in `controller.py`, persistence in `service.py`.
"""
