"""Report module for presenting duplicate detection results.

This package contains:
- console: Human-readable listing of duplicate groups and size formatting
- export: Flat CSV export of every indexed file
"""
