"""Service -> n8n credential type mapping and credential naming.

Org credentials are stored in n8n under the deterministic name
`org_<orgId>_<service>`. Compiled nodes reference that name when the compiler
knows the org; otherwise they reference the shared `<service>_account`
credential an operator configured by hand.
"""
from __future__ import annotations

from typing import Dict, Optional

__all__ = ["SERVICE_CREDENTIAL_TYPES", "credential_name", "credential_ref"]

SERVICE_CREDENTIAL_TYPES: Dict[str, str] = {
    "openai": "openAiApi",
    "anthropic": "anthropicApi",
    "google": "googleGenerativeAiApi",
    "gmail": "gmailOAuth2",
    "slack": "slackOAuth2",
    "twitter": "twitterOAuth2",
    "linkedin": "linkedInOAuth2",
}


def credential_name(service: str, org_id: Optional[str] = None) -> str:
    if org_id:
        return f"org_{org_id}_{service}"
    return f"{service}_account"


def credential_ref(service: str, org_id: Optional[str] = None) -> Dict[str, Dict[str, str]]:
    """`credentials` block for an n8n node using `service`."""
    return {SERVICE_CREDENTIAL_TYPES[service]: {"name": credential_name(service, org_id)}}
