"""Occurrence calculation, scan execution and execution logging for scheduled scans."""
