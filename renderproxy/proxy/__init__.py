"""
renderproxy proxy server.

HTTP surface (aiohttp), request dispatching and the error taxonomy.
Runs as a single process owning one shared rendering-engine session.
"""
