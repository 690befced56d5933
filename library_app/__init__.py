"""Library App - Core Application Package

This package contains the library circulation backend:
- API endpoints (api.py)
- Catalog, membership and borrow lifecycle logic (catalog.py, membership.py, circulation.py)
- CLI interface (main.py)
- Data models (book.py, user.py, borrow.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
