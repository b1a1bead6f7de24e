"""geoauth - GeoIP forward-auth decision point.

Answers reverse-proxy forward-auth requests with 200 or 403 depending on the
country the client address resolves to in a MaxMind database.
"""

__version__ = "1.0.0"
