"""
Open mic listings.

- Every listing carries an edit_version; updates must name the version they saw
- Mutations require an explicit actor
- Each successful mutation appends exactly one row to mic_audit (kept after delete)
"""
