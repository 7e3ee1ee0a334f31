"""Company data export.

Exports every organization's invoices as one PDF each and its expenses as a
single CSV, in bounded memory, under ``exports/{id}_{slug}/`` in a storage
root. The command-line entrypoint lives in ``export_company_data``; the
pipeline stages live under ``company_export.pipeline``.
"""
