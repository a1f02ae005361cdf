"""acmerenew: idempotent ACME http-01 certificate issuance and renewal."""

__version__ = "1.0.0"
