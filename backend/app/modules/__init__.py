"""Application modules.

This package contains the feature modules of the converter service:
- conversion: POST /convert request lifecycle
- site: static pages, health and legacy redirects
"""
