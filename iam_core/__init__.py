"""Multi-tenant IAM authorization core: permission resolution, tenant isolation, access reviews, audit."""

__version__ = "0.1.0"
