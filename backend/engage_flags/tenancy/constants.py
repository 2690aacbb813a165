"""
Constants for tenancy concerns.
"""

# Header carrying the active organization selection from the frontend.
ORGANIZATION_HEADER = "X-Organization-ID"
