"""Project Data Library: ledger, merge engine and category totals."""
