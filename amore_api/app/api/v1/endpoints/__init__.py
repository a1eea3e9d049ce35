"""
Endpoint subpackage for API v1.

Each module defines an APIRouter for one area (members, boats,
statistics, roster administration).  The routers are aggregated in
``router.py``.
"""
