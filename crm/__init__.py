"""
Contact CRM service package.

A thin FastAPI layer over a hosted Supabase project: the table and identity
backends are abstracted so the same data-access and session code runs against
the remote project or a local SQLAlchemy/in-memory stand-in.
"""
