"""DNS setup instructions shown to a tenant after registering a domain.

A pure function of the hostname, its token and the platform CNAME target.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tenantdomains.domains.hostnames import txt_record_name


@dataclass(frozen=True)
class VerificationInstructions:
    hostname: str
    txt_host: str
    txt_value: str
    ttl: int
    cname_target: str

    def txt_steps(self) -> list[str]:
        return [
            "Add a TXT record to your DNS configuration:",
            f"Host/Name: {self.txt_host}",
            "Type: TXT",
            f"Value: {self.txt_value}",
            f"TTL: {self.ttl} (or your DNS provider's minimum)",
            "",
            "DNS propagation typically takes 5-10 minutes but can take up to 48 hours.",
        ]

    def cname_steps(self) -> list[str]:
        return [
            "After verification, add a CNAME record:",
            f"Host/Name: {self.hostname}",
            "Type: CNAME",
            f"Value: {self.cname_target}",
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": "TXT",
            "host": self.txt_host,
            "value": self.txt_value,
            "ttl": self.ttl,
            "instructions": self.txt_steps(),
            "cname": {
                "host": self.hostname,
                "value": self.cname_target,
                "instructions": self.cname_steps(),
            },
        }

    def to_text(self) -> str:
        return "\n".join([*self.txt_steps(), "", *self.cname_steps()])


def build_verification_instructions(
    hostname: str,
    verify_token: str,
    cname_target: str,
    txt_record_prefix: str = "_pmo-verify",
    ttl: int = 3600,
) -> VerificationInstructions:
    return VerificationInstructions(
        hostname=hostname,
        txt_host=txt_record_name(hostname, txt_record_prefix),
        txt_value=verify_token,
        ttl=ttl,
        cname_target=cname_target,
    )
