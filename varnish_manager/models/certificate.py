"""TLS certificate models."""

from typing import Optional

from pydantic import BaseModel, Field


class CertificateBundle(BaseModel):
    """Combined key+certificate PEM written for Hitch."""

    source_cert_path: str = Field(description="Certificate file the bundle was built from")
    source_key_path: str = Field(description="Private key file the bundle was built from")
    combined_pem_path: str = Field(description="Combined PEM referenced by hitch.conf")
    owning_domain: Optional[str] = Field(None, description="ServerName of the referencing vhost")

    class Config:
        """Pydantic configuration."""

        frozen = True


class CertificateInfo(BaseModel):
    """Metadata of a PEM file as reported by openssl."""

    path: str
    subject: str = "Unknown"
    issuer: str = "Unknown"
    valid_from: str = "Unknown"
    valid_to: str = "Unknown"
    expired: bool = True
