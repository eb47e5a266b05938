"""
Domain package for rowkit.

Exports the dynamic row container and the pagination result model. Keep this
package focused on data definitions; nothing here talks to a database.
"""

from rowkit.domain.page import Page
from rowkit.domain.record import Record

__all__ = [
    "Page",
    "Record",
]
