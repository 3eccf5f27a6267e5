"""Governance: audit trail, access review campaigns, ad hoc reviews, evidence export. No FastAPI."""
