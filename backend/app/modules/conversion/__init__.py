"""Conversion module for the upload-and-convert request lifecycle.

Accepts an uploaded media file, validates it, runs the external transcoder
under a concurrency cap and timeout, streams the result back and removes
every temporary file afterwards.
"""
