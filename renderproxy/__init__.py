"""
renderproxy - rendering reverse proxy.

Fetches pages through a headless browser and re-serves them with every
reference rewritten to loop back through the proxy origin.
"""

__version__ = "0.1.0"
