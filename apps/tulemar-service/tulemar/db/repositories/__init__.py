"""
Per-domain repository modules for database access.

Repositories own query construction; services compose them into workflow
steps and decide transaction boundaries through the ``commit`` flags.
"""
