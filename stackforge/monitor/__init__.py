"""Terminal rendering for plans, run reports, changesets and ledger history.

Modules
-------
renderer
    ``ReportRenderer`` turns engine models into Rich renderables.
"""
