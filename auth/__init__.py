"""auth/ -- Provider OAuth flows and credential lifecycle for CloudScan.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/, scanners/, or scans/.
api/ and scans/ import from auth/, not the other way around.
"""
