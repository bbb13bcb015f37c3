"""Provider factories for the SDKs compositions can target."""

import pulumi
import pulumi_aws
import pulumi_cloudflare

from infragraph.config import create_aws_provider
from infragraph.provision.context import ProvisionContext
from infragraph.provision.registry import register


@register("aws", pulumi_aws)
def aws_provider(ctx: ProvisionContext) -> pulumi_aws.Provider:
    """AWS provider for the stack region, tagging every resource with the composition name."""
    return create_aws_provider(ctx.composition_name, ctx.region)


@register("cloudflare", pulumi_cloudflare)
def cloudflare_provider(ctx: ProvisionContext) -> pulumi_cloudflare.Provider:
    """Cloudflare provider; the token comes from ``cloudflare:apiToken`` (falls back to CLOUDFLARE_API_TOKEN)."""
    token = pulumi.Config("cloudflare").get_secret("apiToken")
    return pulumi_cloudflare.Provider(
        "cf",
        api_token=token,
        opts=pulumi.ResourceOptions(additional_secret_outputs=["api_token"]),
    )
