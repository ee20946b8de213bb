"""scans/ -- Scan orchestration and scan record persistence.

Layer rule: scans/ may import from core/, auth/, and scanners/.
Only api/ imports from scans/.
"""
