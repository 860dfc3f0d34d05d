"""certbind: ACME certificate issuance and renewal for platform custom domains."""

__version__ = "1.0.0"
