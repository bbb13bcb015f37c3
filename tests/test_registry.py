"""Tests for the provider registry and the built-in provider factories."""

from unittest.mock import MagicMock, patch

import pulumi_aws
import pulumi_cloudflare

from infragraph.provision import providers
from infragraph.provision.context import ProvisionContext
from infragraph.provision.registry import PROVIDERS, ProviderDef, register


def test_register_adds_to_providers() -> None:
    """A function decorated with @register appears in PROVIDERS."""
    package = MagicMock()

    @register("test-registry", package)
    def factory(ctx: ProvisionContext) -> MagicMock:
        return MagicMock()

    assert "test-registry" in PROVIDERS
    definition = PROVIDERS["test-registry"]
    assert isinstance(definition, ProviderDef)
    assert definition.factory is factory
    assert definition.package is package

    del PROVIDERS["test-registry"]


def test_builtin_providers_registered() -> None:
    """aws and cloudflare prefixes map to their SDK packages."""
    assert PROVIDERS["aws"].package is pulumi_aws
    assert PROVIDERS["aws"].factory is providers.aws_provider
    assert PROVIDERS["cloudflare"].package is pulumi_cloudflare
    assert PROVIDERS["cloudflare"].factory is providers.cloudflare_provider


@patch("infragraph.provision.providers.create_aws_provider")
def test_aws_provider_uses_context(mock_create: MagicMock) -> None:
    """The AWS provider is built for the composition name and region."""
    ctx = ProvisionContext(composition_name="aws-stack", region="eu-west-1")
    assert providers.aws_provider(ctx) is mock_create.return_value
    mock_create.assert_called_once_with("aws-stack", "eu-west-1")


@patch("infragraph.provision.providers.pulumi.ResourceOptions")
@patch("infragraph.provision.providers.pulumi.Config")
@patch("infragraph.provision.providers.pulumi_cloudflare.Provider")
def test_cloudflare_provider_reads_secret_token(
    mock_provider: MagicMock, mock_config_cls: MagicMock, mock_opts: MagicMock
) -> None:
    """The Cloudflare token comes from cloudflare:apiToken and stays secret."""
    mock_config_cls.return_value.get_secret.return_value = "secret-token"
    providers.cloudflare_provider(ProvisionContext(composition_name="demo", region="us-east-1"))

    mock_config_cls.assert_called_once_with("cloudflare")
    mock_config_cls.return_value.get_secret.assert_called_once_with("apiToken")
    assert mock_provider.call_args[1]["api_token"] == "secret-token"
    mock_opts.assert_called_once_with(additional_secret_outputs=["api_token"])
