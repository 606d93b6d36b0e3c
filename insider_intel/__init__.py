"""Insider Intel - SEC Form 4 / 13F-HR ingestion pipeline.

Batch sweeps pull insider transaction reports (Form 4) and institutional holdings
reports (13F-HR) from EDGAR, normalize them into a small relational model and keep
that model current across overlapping runs.

Core concepts:
- Atomic unit is an *insider transaction* (accession_number, line_number)
- Holdings are keyed by (institution, company, report date); unresolved CUSIPs are kept
- Cluster buys and institutional flow sentiment are read-only views over the store

See DESIGN.md for layout and usage.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
